"""File walker for discovering transcript files under the projects root."""

import asyncio
import re
from collections.abc import AsyncIterator
from pathlib import Path

from convo_search.indexer.models import ConversationFile

TRANSCRIPT_SUFFIX = ".jsonl"

# Folder names that get their capital letter back after decoding.
CAPITALIZED_FOLDERS = frozenset({"clients", "dropbox"})

# Ordered rewrites applied to an encoded project directory name, most
# specific first; every hyphen left over afterwards becomes a "/". The
# encoding replaces "/" (and ".", " ") with "-", so this is a heuristic, not
# an inverse.
PROJECT_NAME_REWRITES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^-Users-"), "/Users/"),
    # Compound paths
    (
        re.compile(r"-claude-mcp-servers-conversation-search$", re.IGNORECASE),
        "/claude-mcp-servers/conversation-search",
    ),
    # Domain names
    (re.compile(r"-ai-value-to-", re.IGNORECASE), "/ai.value.to/"),
    (re.compile(r"-dropbox-", re.IGNORECASE), "/Dropbox/"),
    # Numbered folders: "-04-clients-" was "/04 clients/"
    (re.compile(r"-(\d{2})-([a-z]+)-", re.IGNORECASE), r"/\1 \2/"),
]

# Hyphens written by a rewrite are real and must survive the final pass
_KEPT_HYPHEN = "\x00"

_FOLDER_WORD = re.compile(r"/([a-z]+)(?=/)", re.IGNORECASE)
_REPEATED_SLASHES = re.compile(r"/+")


def _capitalize_known_folder(match: re.Match[str]) -> str:
    word = match.group(1)
    if word.lower() in CAPITALIZED_FOLDERS:
        return "/" + word[0].upper() + word[1:]
    return match.group(0)


def decode_project_name(encoded_name: str) -> str:
    """
    Turn an encoded project directory name back into a readable path.

    Example: ``-Users-jane-work-04-clients-acme`` becomes
    ``Users/jane/work/04 clients/acme``. Hyphens that were part of the
    original folder names cannot be told apart from separators, so the
    result is best effort.
    """
    decoded = encoded_name
    for pattern, replacement in PROJECT_NAME_REWRITES:
        decoded = pattern.sub(
            lambda m, r=replacement: m.expand(r).replace("-", _KEPT_HYPHEN), decoded
        )
    decoded = decoded.replace("-", "/").replace(_KEPT_HYPHEN, "-")

    decoded = _FOLDER_WORD.sub(_capitalize_known_folder, decoded)
    decoded = _REPEATED_SLASHES.sub("/", decoded)
    return decoded.removeprefix("/")


def _list_project_files(projects_root: Path) -> list[ConversationFile]:
    files: list[ConversationFile] = []
    for project_dir in sorted(projects_root.iterdir()):
        if not project_dir.is_dir():
            continue

        project_name = decode_project_name(project_dir.name)
        for file_path in sorted(project_dir.iterdir()):
            if file_path.suffix == TRANSCRIPT_SUFFIX and file_path.is_file():
                files.append(ConversationFile(path=file_path, project_name=project_name))
    return files


async def iter_conversation_files(projects_root: Path) -> AsyncIterator[ConversationFile]:
    """
    Yield every transcript file under the projects root.

    Structure expected:
    <projects_root>/
    ├── -Users-jane-code-api/
    │   ├── 3f1c...e9.jsonl
    │   └── 8a0b...12.jsonl
    └── -Users-jane-code-web/
        └── ...
    """
    if not projects_root.is_dir():
        return

    files = await asyncio.to_thread(_list_project_files, projects_root)
    for conversation_file in files:
        yield conversation_file

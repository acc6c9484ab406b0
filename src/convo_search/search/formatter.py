"""Grouping of raw search matches into conversation-level results."""

import shlex
from dataclasses import dataclass, field

from convo_search.indexer.models import IndexedMessage, MessageContext, SearchResult

MAX_MESSAGES_PER_CONVERSATION = 5
DEDUP_PREFIX_LENGTH = 100
DISPLAY_CONTENT_LENGTH = 300


@dataclass
class ResumeDescriptor:
    """Where and how to reopen a conversation."""

    project_path: str
    conversation_id: str

    @property
    def command(self) -> str:
        path = shlex.quote(self.project_path)
        return f"cd {path} && claude --resume {shlex.quote(self.conversation_id)}"


@dataclass
class ConversationMessage:
    timestamp: str
    type: str
    content: str
    highlight: str | None = None
    context: MessageContext | None = None


def _context_entry(message: IndexedMessage) -> dict:
    return {
        "timestamp": message.timestamp.isoformat(),
        "type": message.type,
        "content": truncate_content(message.content),
    }


def _message_to_dict(message: ConversationMessage) -> dict:
    data = {
        "timestamp": message.timestamp,
        "type": message.type,
        "content": message.content,
        "highlight": message.highlight,
    }
    if message.context is not None:
        data["context"] = {
            "before": [_context_entry(m) for m in message.context.before],
            "after": [_context_entry(m) for m in message.context.after],
        }
    return data


@dataclass
class ConversationResult:
    conversation_id: str
    project_path: str
    project_name: str
    resume: ResumeDescriptor
    messages: list[ConversationMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "project_path": self.project_path,
            "project_name": self.project_name,
            "resume_command": self.resume.command,
            "messages": [_message_to_dict(m) for m in self.messages],
        }


@dataclass
class SearchSummary:
    conversations: list[ConversationResult]
    total_matches: int
    total_conversations: int


def truncate_content(content: str, max_length: int = DISPLAY_CONTENT_LENGTH) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def deduplicate_messages(results: list[SearchResult]) -> list[SearchResult]:
    """
    Drop repeated messages, keyed on type and the start of the content.

    The first occurrence keeps its slot; a later duplicate only replaces it
    when it carries a highlight and the kept one doesn't.
    """
    seen: dict[tuple[str, str], SearchResult] = {}
    for result in results:
        key = (result.message.type, result.message.content[:DEDUP_PREFIX_LENGTH])
        kept = seen.get(key)
        if kept is None or (result.highlights and not kept.highlights):
            seen[key] = result
    return list(seen.values())


def format_search_results(results: list[SearchResult], limit: int = 10) -> SearchSummary:
    """
    Group matches by conversation and rank the conversations.

    Conversations are keyed on (conversation_id, project_path) since the same
    id can show up under two checkouts of a project. Within a conversation,
    matches are put in time order, deduplicated and capped; conversations
    with more distinct matches rank first.

    Args:
        results: Raw per-message matches from Database.search()
        limit: Maximum number of conversations to return

    Returns:
        SearchSummary whose totals are counted before the limit is applied.
    """
    groups: dict[tuple[str, str], list[SearchResult]] = {}
    for result in results:
        key = (result.message.conversation_id, result.message.project_path)
        groups.setdefault(key, []).append(result)

    conversations: list[ConversationResult] = []
    for (conversation_id, project_path), group in groups.items():
        group.sort(key=lambda r: r.message.timestamp)
        unique = deduplicate_messages(group)[:MAX_MESSAGES_PER_CONVERSATION]

        conversations.append(
            ConversationResult(
                conversation_id=conversation_id,
                project_path=project_path,
                project_name=group[0].message.project_name,
                resume=ResumeDescriptor(project_path=project_path, conversation_id=conversation_id),
                messages=[
                    ConversationMessage(
                        timestamp=r.message.timestamp.isoformat(),
                        type=r.message.type,
                        content=truncate_content(r.message.content),
                        highlight=r.highlights[0] if r.highlights else None,
                        context=r.context if (r.context.before or r.context.after) else None,
                    )
                    for r in unique
                ],
            )
        )

    # sort() is stable, so ties keep their first-seen order
    conversations.sort(key=lambda c: len(c.messages), reverse=True)

    return SearchSummary(
        conversations=conversations[:limit],
        total_matches=len(results),
        total_conversations=len(conversations),
    )

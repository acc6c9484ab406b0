"""Parser for JSONL conversation transcripts."""

import json
import logging
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from convo_search.indexer.models import (
    ContentPart,
    ConversationRecord,
    IndexedMessage,
    OtherPart,
    TextPart,
    ToolInvocationPart,
    ToolOperation,
)

logger = logging.getLogger(__name__)

# Length of the display copy of a message; the full text lives in searchable_text
DISPLAY_CONTENT_LENGTH = 1000


def _parse_parts(content: Any) -> list[ContentPart]:
    """Resolve ``message.content`` (string or list of typed items) into parts."""
    if isinstance(content, str):
        return [TextPart(text=content)]
    if not isinstance(content, list):
        return []

    parts: list[ContentPart] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text":
            parts.append(TextPart(text=item.get("text") or ""))
        elif item_type == "tool_use":
            tool_input = item.get("input")
            parts.append(
                ToolInvocationPart(
                    name=item.get("name") or "",
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
        else:
            parts.append(OtherPart(type=str(item_type), raw=item))
    return parts


def parse_record(data: dict[str, Any]) -> ConversationRecord:
    """Build a ConversationRecord from one decoded JSON line."""
    message = data.get("message")
    content = message.get("content") if isinstance(message, dict) else None

    return ConversationRecord(
        type=data.get("type"),
        uuid=data.get("uuid"),
        parent_uuid=data.get("parentUuid"),
        session_id=data.get("sessionId"),
        timestamp=data.get("timestamp"),
        cwd=data.get("cwd"),
        is_meta=bool(data.get("isMeta")),
        parts=_parse_parts(content),
        message=message,
        tool_use_result=data.get("toolUseResult"),
    )


def iter_records(file_path: Path) -> Iterator[ConversationRecord]:
    """
    Lazily parse a transcript file, one record per non-empty line.

    Lines that are not valid JSON objects are logged and skipped; they never
    abort the rest of the file.
    """
    with open(file_path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed line %d in %s: %s", line_number, file_path, e)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping non-object line %d in %s", line_number, file_path)
                continue
            yield parse_record(data)


def get_session_id(file_path: Path) -> str | None:
    """Return the first session id found in the file, reading no further."""
    for record in iter_records(file_path):
        if record.session_id:
            return record.session_id
    return None


def extract_searchable_content(record: ConversationRecord) -> str:
    """Concatenate all indexable text of a record, lowercased."""
    parts: list[str] = []

    for part in record.parts:
        if isinstance(part, TextPart):
            if part.text:
                parts.append(part.text)
        elif isinstance(part, ToolInvocationPart):
            if part.input:
                parts.append(json.dumps(part.input))

    result = record.tool_use_result
    if isinstance(result, str):
        parts.append(result)
    elif isinstance(result, dict):
        for key in ("stdout", "stderr"):
            value = result.get(key)
            if value:
                parts.append(str(value))

    return " ".join(parts).lower()


def extract_tool_operations(record: ConversationRecord) -> list[ToolOperation]:
    """Collect the tool invocations of a record."""
    operations: list[ToolOperation] = []

    for part in record.parts:
        if not isinstance(part, ToolInvocationPart):
            continue

        op = ToolOperation(name=part.name, description=part.input.get("description"))

        file_path = part.input.get("file_path") or part.input.get("path")
        if file_path:
            op.file_paths = [str(file_path)]

        command = part.input.get("command")
        if command:
            op.commands = [str(command)]

        operations.append(op)

    return operations


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def convert_to_indexed_message(
    record: ConversationRecord,
    conversation_id: str,
    project_path: str,
    project_name: str,
) -> IndexedMessage | None:
    """
    Convert a parsed record into a message row.

    Returns None for meta records and for records without a uuid or a
    parseable timestamp.
    """
    if record.is_meta or not record.uuid:
        return None

    timestamp = parse_timestamp(record.timestamp)
    if timestamp is None:
        return None

    searchable_text = extract_searchable_content(record)
    tool_operations = extract_tool_operations(record)

    if record.tool_use_result not in (None, ""):
        message_type = "tool_result"
    elif tool_operations:
        message_type = "tool_use"
    else:
        message_type = record.type or "unknown"

    return IndexedMessage(
        id=f"{conversation_id}_{record.uuid}",
        conversation_id=conversation_id,
        project_path=project_path,
        project_name=project_name,
        timestamp=timestamp,
        type=message_type,
        content=searchable_text[:DISPLAY_CONTENT_LENGTH],
        raw_content=record.message if record.message is not None else record.tool_use_result,
        tool_operations=tool_operations,
        searchable_text=searchable_text,
        message_uuid=record.uuid,
        parent_uuid=record.parent_uuid,
    )

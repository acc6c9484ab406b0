"""Data models for the indexer."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass
class TextPart:
    """Plain text content of a message."""

    text: str


@dataclass
class ToolInvocationPart:
    """A tool call issued by the assistant."""

    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class OtherPart:
    """Any content part we don't index (images, thinking blocks, ...)."""

    type: str
    raw: Any = None


ContentPart = TextPart | ToolInvocationPart | OtherPart


@dataclass
class ConversationRecord:
    """One parsed line of a transcript file.

    Content is resolved once into typed parts; downstream code never looks at
    the raw shape of ``message.content`` again.
    """

    type: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    session_id: str | None = None
    timestamp: str | None = None
    cwd: str | None = None
    is_meta: bool = False
    parts: list[ContentPart] = field(default_factory=list)
    message: Any = None  # Original "message" payload
    tool_use_result: Any = None


@dataclass
class ToolOperation:
    """A tool invocation extracted from a message."""

    name: str
    description: str | None = None
    file_paths: list[str] | None = None
    commands: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            data["description"] = self.description
        if self.file_paths:
            data["file_paths"] = self.file_paths
        if self.commands:
            data["commands"] = self.commands
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolOperation":
        return cls(
            name=data.get("name", ""),
            description=data.get("description"),
            file_paths=data.get("file_paths"),
            commands=data.get("commands"),
        )


@dataclass
class IndexedMessage:
    """Represents a message row in the index."""

    id: str  # conversation_id + "_" + message_uuid
    conversation_id: str
    project_path: str
    project_name: str
    timestamp: datetime
    type: str  # user, assistant, tool_use, tool_result
    content: str  # Truncated display text
    raw_content: Any = None
    tool_operations: list[ToolOperation] = field(default_factory=list)
    searchable_text: str = ""
    message_uuid: str = ""
    parent_uuid: str | None = None


@dataclass
class MessageContext:
    """Messages surrounding a match, both lists in ascending time order."""

    before: list[IndexedMessage] = field(default_factory=list)
    after: list[IndexedMessage] = field(default_factory=list)


@dataclass
class SearchOptions:
    """Filters and paging for a full-text search."""

    query: str
    limit: int | None = None
    offset: int | None = None
    project_path: str | None = None
    exclude_project_path: str | None = None
    conversation_id: str | None = None
    exclude_conversation_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    message_type: str | None = None
    include_context: bool = False
    context_size: int = 2


@dataclass
class SearchResult:
    """Represents a single matching message with its context."""

    message: IndexedMessage
    score: float = 1.0
    context: MessageContext = field(default_factory=MessageContext)
    highlights: list[str] = field(default_factory=list)
    conversation_file: str = ""


@dataclass
class IndexingMetadata:
    """Bookkeeping for one indexed transcript file."""

    file_path: str
    last_indexed: datetime
    file_size: int
    message_count: int


@dataclass
class ProjectSummary:
    """A distinct project with the number of messages indexed for it."""

    path: str
    name: str
    message_count: int


@dataclass
class ConversationFile:
    """A transcript file discovered under the projects root."""

    path: Path
    project_name: str


@dataclass
class IndexResult:
    """Totals for one indexing pass."""

    files_indexed: int = 0
    messages_indexed: int = 0


@dataclass
class IndexStats:
    """Row counts of the index tables."""

    messages: int
    fts_rows: int
    files: int

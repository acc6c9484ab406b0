"""
Indexer module for convo-search.

This module handles synchronization between the transcript files and the
SQLite FTS5 index: discovery, parsing, storage and incremental re-indexing.
"""

from convo_search.indexer.database import Database
from convo_search.indexer.indexer import Indexer
from convo_search.indexer.models import (
    ConversationFile,
    ConversationRecord,
    IndexedMessage,
    IndexResult,
    IndexStats,
    MessageContext,
    ProjectSummary,
    SearchOptions,
    SearchResult,
    ToolOperation,
)
from convo_search.indexer.parser import convert_to_indexed_message, iter_records
from convo_search.indexer.walker import decode_project_name, iter_conversation_files

__all__ = [
    "ConversationFile",
    "ConversationRecord",
    "Database",
    "IndexResult",
    "IndexStats",
    "IndexedMessage",
    "Indexer",
    "MessageContext",
    "ProjectSummary",
    "SearchOptions",
    "SearchResult",
    "ToolOperation",
    "convert_to_indexed_message",
    "decode_project_name",
    "iter_conversation_files",
    "iter_records",
]

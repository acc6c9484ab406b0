"""SQLite database management for the conversation index."""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from convo_search.errors import DatabaseError, SearchError, StorageInitError
from convo_search.indexer.models import (
    IndexedMessage,
    IndexingMetadata,
    IndexStats,
    MessageContext,
    ProjectSummary,
    SearchOptions,
    SearchResult,
    ToolOperation,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

SCHEMA_SQL = """
-- convo-search Index Schema v1.0
-- This index is disposable: it regenerates from the transcript files

PRAGMA journal_mode = WAL;

-- Messages table
CREATE TABLE IF NOT EXISTS messages (
    pk              INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL,
    project_path    TEXT NOT NULL,
    project_name    TEXT NOT NULL,
    timestamp       INTEGER NOT NULL,
    type            TEXT NOT NULL,
    content         TEXT,
    raw_content     TEXT,
    tool_operations TEXT,
    searchable_text TEXT NOT NULL DEFAULT '',
    message_uuid    TEXT NOT NULL,
    parent_uuid     TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_project ON messages(project_path);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_type ON messages(type);

-- FTS5 virtual table, rowid mirrors messages.pk
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
    id UNINDEXED,
    searchable_text
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts(rowid, id, searchable_text)
    VALUES (NEW.pk, NEW.id, NEW.searchable_text || ' ' || COALESCE(NEW.tool_operations, ''));
END;

CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = OLD.pk;
END;

CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = OLD.pk;
    INSERT INTO messages_fts(rowid, id, searchable_text)
    VALUES (NEW.pk, NEW.id, NEW.searchable_text || ' ' || COALESCE(NEW.tool_operations, ''));
END;

-- Per-file bookkeeping for incremental indexing
CREATE TABLE IF NOT EXISTS indexing_metadata (
    file_path     TEXT PRIMARY KEY,
    last_indexed  INTEGER NOT NULL,
    file_size     INTEGER NOT NULL,
    message_count INTEGER NOT NULL
);

-- Metadata table for index versioning
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR IGNORE INTO meta (key, value) VALUES ('created_at', datetime('now'));
"""


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class Database:
    """SQLite database for the conversation index."""

    # Snippet configuration for FTS5 search results
    SNIPPET_COLUMN_INDEX = 1  # searchable_text is the second column in messages_fts
    SNIPPET_HIGHLIGHT_START = "<mark>"
    SNIPPET_HIGHLIGHT_END = "</mark>"
    SNIPPET_ELLIPSIS = "..."
    SNIPPET_MAX_TOKENS = 32

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.conn = sqlite3.connect(str(self.db_path))
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """
        Create the schema.

        Raises StorageInitError if the file cannot be opened or is not a
        usable SQLite database; there is no degraded mode.
        """
        try:
            with self._write_cursor() as cursor:
                cursor.executescript(SCHEMA_SQL)
                cursor.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
                    (SCHEMA_VERSION,),
                )
        except (sqlite3.Error, OSError) as e:
            self.close()
            raise StorageInitError(str(self.db_path), str(e)) from e
        logger.debug("Database initialized at %s", self.db_path)

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def clear(self) -> None:
        """Clear all data from the database (for reindexing)."""
        with self._write_cursor() as cursor:
            cursor.execute("DELETE FROM messages")
            cursor.execute("DELETE FROM indexing_metadata")

    # Message operations

    def insert_message(self, message: IndexedMessage) -> None:
        """Insert a message, replacing any existing row with the same id."""
        tool_ops_json = (
            json.dumps([op.to_dict() for op in message.tool_operations])
            if message.tool_operations
            else None
        )
        try:
            with self._write_cursor() as cursor:
                cursor.execute(
                    """INSERT INTO messages
                    (id, conversation_id, project_path, project_name, timestamp, type,
                     content, raw_content, tool_operations, searchable_text,
                     message_uuid, parent_uuid)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        conversation_id = excluded.conversation_id,
                        project_path = excluded.project_path,
                        project_name = excluded.project_name,
                        timestamp = excluded.timestamp,
                        type = excluded.type,
                        content = excluded.content,
                        raw_content = excluded.raw_content,
                        tool_operations = excluded.tool_operations,
                        searchable_text = excluded.searchable_text,
                        message_uuid = excluded.message_uuid,
                        parent_uuid = excluded.parent_uuid
                    """,
                    (
                        message.id,
                        message.conversation_id,
                        message.project_path,
                        message.project_name,
                        _to_millis(message.timestamp),
                        message.type,
                        message.content,
                        json.dumps(message.raw_content),
                        tool_ops_json,
                        message.searchable_text,
                        message.message_uuid,
                        message.parent_uuid,
                    ),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise DatabaseError(f"Failed to insert message {message.id}: {e}") from e

    def get_message(self, message_id: str) -> IndexedMessage | None:
        """Get a message by its id."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM messages WHERE id = ?", (message_id,))
            row = cursor.fetchone()
            return self._row_to_message(row) if row else None

    def clear_project(self, project_path: str) -> int:
        """Delete every message of a project, returning how many were removed."""
        with self._write_cursor() as cursor:
            cursor.execute("DELETE FROM messages WHERE project_path = ?", (project_path,))
            return cursor.rowcount

    def get_conversation_messages(
        self,
        conversation_id: str,
        limit: int,
        start_from: int = 0,
    ) -> list[IndexedMessage]:
        """
        Page through a conversation in chronological order.

        A non-negative ``start_from`` is an offset from the oldest message.
        A negative one counts from the newest: -1 ends the window at the last
        message, -2 at the one before it, and so on.
        """
        if start_from >= 0:
            query = """
                SELECT * FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp ASC
                LIMIT ? OFFSET ?
            """
            params = (conversation_id, limit, start_from)
        else:
            query = """
                SELECT * FROM (
                    SELECT * FROM messages
                    WHERE conversation_id = ?
                    ORDER BY timestamp DESC
                    LIMIT ? OFFSET ?
                ) ORDER BY timestamp ASC
            """
            params = (conversation_id, limit, abs(start_from) - 1)

        with self._read_cursor() as cursor:
            cursor.execute(query, params)
            return [self._row_to_message(row) for row in cursor.fetchall()]

    def get_message_context(self, message: IndexedMessage, size: int) -> MessageContext:
        """
        Get the messages immediately before and after ``message`` in its
        conversation, ordered by time. The active search predicate plays no
        part here.
        """
        millis = _to_millis(message.timestamp)
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT * FROM messages
                WHERE conversation_id = ? AND timestamp < ?
                ORDER BY timestamp DESC
                LIMIT ?""",
                (message.conversation_id, millis, size),
            )
            before = [self._row_to_message(row) for row in cursor.fetchall()]

            cursor.execute(
                """SELECT * FROM messages
                WHERE conversation_id = ? AND timestamp > ?
                ORDER BY timestamp ASC
                LIMIT ?""",
                (message.conversation_id, millis, size),
            )
            after = [self._row_to_message(row) for row in cursor.fetchall()]

        before.reverse()
        return MessageContext(before=before, after=after)

    def get_projects(self) -> list[ProjectSummary]:
        """List distinct projects with their message counts."""
        with self._read_cursor() as cursor:
            cursor.execute(
                """SELECT project_path, project_name, COUNT(*) AS message_count
                FROM messages
                GROUP BY project_path, project_name
                ORDER BY project_name, project_path"""
            )
            return [
                ProjectSummary(
                    path=row["project_path"],
                    name=row["project_name"],
                    message_count=row["message_count"],
                )
                for row in cursor.fetchall()
            ]

    def _row_to_message(self, row: sqlite3.Row) -> IndexedMessage:
        """Convert a database row to an IndexedMessage."""
        tool_ops = json.loads(row["tool_operations"]) if row["tool_operations"] else []
        return IndexedMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            project_path=row["project_path"],
            project_name=row["project_name"],
            timestamp=_from_millis(row["timestamp"]),
            type=row["type"],
            content=row["content"] or "",
            raw_content=json.loads(row["raw_content"]) if row["raw_content"] else None,
            tool_operations=[ToolOperation.from_dict(op) for op in tool_ops],
            searchable_text=row["searchable_text"],
            message_uuid=row["message_uuid"],
            parent_uuid=row["parent_uuid"],
        )

    # Indexing metadata operations

    def update_indexing_metadata(self, file_path: str, file_size: int, message_count: int) -> None:
        """Record that a file was fully indexed at the given size."""
        with self._write_cursor() as cursor:
            cursor.execute(
                """INSERT OR REPLACE INTO indexing_metadata
                (file_path, last_indexed, file_size, message_count)
                VALUES (?, ?, ?, ?)""",
                (file_path, _to_millis(datetime.now(timezone.utc)), file_size, message_count),
            )

    def is_file_indexed(self, file_path: str, file_size: int) -> bool:
        """True if the file was indexed when it had exactly this size."""
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT file_size FROM indexing_metadata WHERE file_path = ?",
                (file_path,),
            )
            row = cursor.fetchone()
            return row is not None and row["file_size"] == file_size

    def get_indexing_metadata(self, file_path: str) -> IndexingMetadata | None:
        """Get the bookkeeping row of a file."""
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT * FROM indexing_metadata WHERE file_path = ?",
                (file_path,),
            )
            row = cursor.fetchone()
            if row:
                return IndexingMetadata(
                    file_path=row["file_path"],
                    last_indexed=_from_millis(row["last_indexed"]),
                    file_size=row["file_size"],
                    message_count=row["message_count"],
                )
            return None

    def get_stats(self) -> IndexStats:
        """Count rows in the message, FTS and metadata tables."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM messages")
            messages = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM messages_fts")
            fts_rows = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM indexing_metadata")
            files = cursor.fetchone()[0]
        return IndexStats(messages=messages, fts_rows=fts_rows, files=files)

    # Search operations

    def search(self, options: SearchOptions) -> list[SearchResult]:
        """
        Search for messages matching the FTS5 expression in ``options.query``.

        Filters are AND-ed onto the match:
        - project_path / exclude_project_path: case-insensitive substring
        - conversation_id / exclude_conversation_id: exact
        - date_from / date_to: inclusive timestamp range
        - message_type: exact

        Results are ordered by FTS5 rank, then newest first. Errors from the
        engine (e.g. a malformed MATCH expression) raise SearchError.
        """
        snippet_func = (
            f"snippet(messages_fts, {self.SNIPPET_COLUMN_INDEX}, "
            f"'{self.SNIPPET_HIGHLIGHT_START}', '{self.SNIPPET_HIGHLIGHT_END}', "
            f"'{self.SNIPPET_ELLIPSIS}', {self.SNIPPET_MAX_TOKENS})"
        )
        search_query = f"""
            SELECT
                m.*,
                {snippet_func} AS highlight,
                messages_fts.rank AS rank
            FROM messages_fts
            JOIN messages m ON messages_fts.rowid = m.pk
            WHERE messages_fts MATCH ?
        """
        params: list = [options.query]

        if options.project_path:
            search_query += " AND LOWER(m.project_path) LIKE ?"
            params.append(f"%{options.project_path.lower()}%")
        if options.exclude_project_path:
            search_query += " AND LOWER(m.project_path) NOT LIKE ?"
            params.append(f"%{options.exclude_project_path.lower()}%")
        if options.conversation_id:
            search_query += " AND m.conversation_id = ?"
            params.append(options.conversation_id)
        if options.exclude_conversation_id:
            search_query += " AND m.conversation_id != ?"
            params.append(options.exclude_conversation_id)
        if options.date_from:
            search_query += " AND m.timestamp >= ?"
            params.append(_to_millis(options.date_from))
        if options.date_to:
            search_query += " AND m.timestamp <= ?"
            params.append(_to_millis(options.date_to))
        if options.message_type:
            search_query += " AND m.type = ?"
            params.append(options.message_type)

        search_query += " ORDER BY rank, m.timestamp DESC"

        # SQLite needs a LIMIT before it accepts an OFFSET
        if options.limit or options.offset:
            search_query += " LIMIT ?"
            params.append(options.limit if options.limit else -1)
        if options.offset:
            search_query += " OFFSET ?"
            params.append(options.offset)

        try:
            with self._read_cursor() as cursor:
                cursor.execute(search_query, params)
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.debug("Search error for %r: %s", options.query, e)
            raise SearchError(options.query, str(e)) from e

        results = []
        for row in rows:
            message = self._row_to_message(row)
            result = SearchResult(
                message=message,
                # FTS5 rank is negative BM25: more negative is better
                score=-row["rank"],
                highlights=[row["highlight"]] if row["highlight"] else [],
                conversation_file=f"{message.project_path}/{message.conversation_id}.jsonl",
            )
            if options.include_context:
                result.context = self.get_message_context(message, options.context_size)
            results.append(result)
        return results

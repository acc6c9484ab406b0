"""Main indexer that coordinates syncing transcript files to SQLite."""

import asyncio
import logging
import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from convo_search.errors import FileAccessError, IndexingError, IndexingInProgressError
from convo_search.indexer.database import Database
from convo_search.indexer.models import ConversationFile, IndexResult
from convo_search.indexer.parser import convert_to_indexed_message, get_session_id, iter_records
from convo_search.indexer.walker import (
    TRANSCRIPT_SUFFIX,
    decode_project_name,
    iter_conversation_files,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

# Hand control back to the event loop every this many records
YIELD_EVERY_RECORDS = 200


class Indexer:
    """
    Indexer that syncs transcript files into SQLite FTS5.

    Transcript files are the source of truth. A file is re-read whenever its
    size differs from the size recorded after its last successful pass;
    messages are upserted by id, so re-reading a file converges to one row
    per message.

    Concurrency:
        Only one pass may run at a time. A second call to ``index_all`` (from
        the event loop or from the background sync thread) fails with
        IndexingInProgressError instead of waiting.
    """

    def __init__(self, projects_path: Path, db_path: Path):
        """
        Initialize the indexer and open the database.

        Args:
            projects_path: Root directory holding one folder per project
            db_path: Path to the SQLite database file

        Raises:
            StorageInitError: If the database cannot be opened or created.
        """
        self.projects_path = projects_path
        self.db = Database(db_path)
        self.db.initialize()
        self._running = threading.Lock()

    def close(self) -> None:
        """Close database connections."""
        self.db.close()

    @property
    def is_indexing(self) -> bool:
        return self._running.locked()

    @contextmanager
    def _single_flight(self) -> Iterator[None]:
        if not self._running.acquire(blocking=False):
            raise IndexingInProgressError()
        try:
            yield
        finally:
            self._running.release()

    async def index_all(self, progress: ProgressCallback | None = None) -> IndexResult:
        """
        Index every new or changed transcript under the projects root.

        A failure on one file is reported through ``progress`` and the pass
        moves on to the next file.

        Returns:
            IndexResult with the number of files and messages indexed.
        """
        report = progress or (lambda message: None)

        with self._single_flight():
            result = IndexResult()
            report("Starting indexing process...")
            logger.info("Indexing conversations under %s", self.projects_path)

            try:
                async for conversation_file in iter_conversation_files(self.projects_path):
                    await self._index_one(conversation_file, result, report)
                    # Let searches run between files
                    await asyncio.sleep(0)
            except OSError as e:
                report(f"Indexing failed: {e}")
                raise IndexingError(
                    f"Failed to read projects directory {self.projects_path}: {e}"
                ) from e

            report(
                f"Indexing complete! Indexed {result.messages_indexed} messages "
                f"from {result.files_indexed} files"
            )
            logger.info(
                "Indexing complete: %d messages from %d files",
                result.messages_indexed,
                result.files_indexed,
            )
            return result

    async def _index_one(
        self,
        conversation_file: ConversationFile,
        result: IndexResult,
        report: ProgressCallback,
    ) -> None:
        """Index one file of a pass, containing any failure to that file."""
        try:
            count = await self._index_file(conversation_file, report)
        except Exception as e:
            logger.warning("Failed to index %s: %s", conversation_file.path, e)
            report(f"Failed to index {conversation_file.path.name}: {e}")
            return

        if count is not None:
            result.files_indexed += 1
            result.messages_indexed += count

    async def index_file(self, file_path: Path) -> int:
        """
        Index a single transcript file.

        Returns the number of messages indexed, 0 if the file is unchanged.
        """
        conversation_file = ConversationFile(
            path=file_path,
            project_name=decode_project_name(file_path.parent.name),
        )
        with self._single_flight():
            try:
                count = await self._index_file(conversation_file, lambda message: None)
            except Exception as e:
                raise IndexingError(f"Failed to index file {file_path}: {e}") from e
        return count or 0

    async def _index_file(
        self,
        conversation_file: ConversationFile,
        report: ProgressCallback,
    ) -> int | None:
        """Index one file. Returns None when it was skipped as unchanged."""
        file_path = conversation_file.path
        try:
            file_size = os.stat(file_path).st_size
        except OSError as e:
            raise FileAccessError(str(file_path), str(e)) from e

        if self.db.is_file_indexed(str(file_path), file_size):
            report(f"Skipping {file_path.name} (already indexed)")
            return None

        report(f"Indexing {conversation_file.project_name}/{file_path.name}...")

        session_id = get_session_id(file_path)
        conversation_id = session_id or file_path.name.removesuffix(TRANSCRIPT_SUFFIX)
        directory = str(file_path.parent)
        fallback_name = conversation_file.project_name.rsplit("/", 1)[-1] or file_path.parent.name

        count = 0
        for line_count, record in enumerate(iter_records(file_path), 1):
            # The same project can be checked out in several places; the
            # working directory recorded in the message wins over the folder
            if record.cwd and record.cwd.strip():
                project_path = record.cwd
                project_name = os.path.basename(project_path.rstrip("/")) or project_path
            else:
                project_path = directory
                project_name = fallback_name

            message = convert_to_indexed_message(record, conversation_id, project_path, project_name)
            if message is not None:
                self.db.insert_message(message)
                count += 1

            if line_count % YIELD_EVERY_RECORDS == 0:
                await asyncio.sleep(0)

        # Only recorded once the whole file went through
        self.db.update_indexing_metadata(str(file_path), file_size, count)
        report(f"Indexed {count} messages from {file_path.name}")
        logger.debug("Indexed %d messages from %s", count, file_path)
        return count

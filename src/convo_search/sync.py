"""Periodic re-indexing in a background thread.

New conversations are written to disk while the server runs; the auto-indexer
picks them up by running an incremental pass every INDEX_INTERVAL seconds.
"""

import asyncio
import logging
import threading

from convo_search.errors import IndexingInProgressError
from convo_search.indexer import Indexer, IndexResult

logger = logging.getLogger(__name__)


class SyncManager:
    """Runs ``Indexer.index_all`` on a timer.

    The worker is a daemon thread with its own event loop per pass, so a
    hung pass never keeps the process alive after the server exits.
    """

    def __init__(self, indexer: Indexer, interval: int):
        """
        Args:
            indexer: Indexer to drive.
            interval: Seconds between passes. With 0 no timed passes run,
                only the startup pass requested through ``start(index_now=True)``.
        """
        if interval < 0:
            raise ValueError(f"Sync interval must be >= 0, got {interval}")

        self._indexer = indexer
        self._interval = interval
        self._stop_requested = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, index_now: bool = False) -> None:
        """Launch the worker thread; a no-op if it is already running.

        Args:
            index_now: Run a pass immediately instead of waiting one interval.
        """
        if self.running:
            logger.warning("Auto-index thread is already running")
            return

        self._stop_requested.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(index_now,),
            name="convo-search-sync",
            daemon=True,
        )
        self._thread.start()
        if self._interval:
            logger.info("Auto-index every %ds", self._interval)
        else:
            logger.info("Periodic auto-index disabled")

    def stop(self) -> None:
        """Ask the worker to exit and wait for it.

        A pass in progress is allowed to finish; the wait is bounded by one
        interval.
        """
        if not self.running:
            return

        self._stop_requested.set()
        self._thread.join(timeout=max(self._interval, 1) + 1)
        if self._thread.is_alive():
            logger.warning("Auto-index thread still busy at shutdown")
        else:
            logger.info("Auto-index stopped")
        self._thread = None

    def run_once(self) -> IndexResult | None:
        """Run one pass in the calling thread.

        Returns None if the pass was skipped or failed.
        """
        try:
            result = asyncio.run(self._indexer.index_all(logger.debug))
        except IndexingInProgressError:
            logger.debug("Auto-index skipped: a pass is already running")
            return None
        except Exception:
            logger.exception("Error during auto-index")
            return None

        if result.messages_indexed:
            logger.info(
                "Auto-index: %d messages from %d files",
                result.messages_indexed,
                result.files_indexed,
            )
        else:
            logger.debug("Auto-index: no changes detected")
        return result

    def _run(self, index_now: bool) -> None:
        if index_now:
            self.run_once()

        # wait() returns True once stop() has been called
        while self._interval and not self._stop_requested.wait(timeout=self._interval):
            self.run_once()

        logger.debug("Auto-index thread exiting")

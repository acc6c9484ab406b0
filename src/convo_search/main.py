"""Main entry point for the convo-search MCP server."""

import argparse
import asyncio
import logging
import sys

from fastmcp import FastMCP

from convo_search.config import Config, get_config
from convo_search.errors import ConversationSearchError
from convo_search.indexer import Indexer
from convo_search.sync import SyncManager
from convo_search.tools import register_tools

logger = logging.getLogger(__name__)


def create_server(config: Config, indexer: Indexer) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config: Configuration instance with all settings.
        indexer: Indexer with an open database.
    """
    mcp = FastMCP(
        name="convo-search",
        instructions=(
            "convo-search indexes past coding-assistant conversations. Use "
            "search_conversations to find where something was discussed, "
            "get_conversation_messages or get_conversation_context to read "
            "around a match, and list_projects to see what is indexed."
        ),
    )

    logger.info("Registering tools...")
    register_tools(mcp, indexer, config)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server over stdio."""
    parser = argparse.ArgumentParser(
        description="convo-search - MCP server for searching conversation history"
    )
    parser.add_argument(
        "--reindex",
        action="store_true",
        help="Drop the index and rebuild it before starting",
    )
    parser.add_argument(
        "--index-only",
        action="store_true",
        help="Run one indexing pass and exit without starting the server",
    )
    args = parser.parse_args()

    try:
        config = get_config()
    except ConversationSearchError as e:
        print(f"convo-search: {e}", file=sys.stderr)
        sys.exit(2)

    # Configure logging here to avoid side effects on import. stdout carries
    # the MCP protocol, so logs go to stderr.
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("=" * 50)
    logger.info("convo-search starting...")
    logger.info("  PROJECTS_DIR:   %s", config.projects_dir)
    logger.info("  DB_PATH:        %s", config.db_path)
    logger.info("  INDEX_INTERVAL: %ss", config.index_interval or "disabled")
    logger.info("  MAX_RESULTS:    %s", config.max_results)
    logger.info("=" * 50)

    try:
        indexer = Indexer(config.projects_dir, config.db_path)
    except ConversationSearchError:
        logger.exception("Cannot open the index")
        sys.exit(1)

    if args.reindex:
        logger.info("Force reindex requested...")
        indexer.db.clear()

    sync_manager: SyncManager | None = None
    try:
        if args.index_only:
            result = asyncio.run(indexer.index_all(logger.info))
            logger.info(
                "Indexed %d messages from %d files",
                result.messages_indexed,
                result.files_indexed,
            )
            return

        mcp = create_server(config, indexer)

        # With INDEX_INTERVAL=0 only the startup pass runs
        sync_manager = SyncManager(indexer, config.index_interval)
        sync_manager.start(index_now=True)

        logger.info("Starting MCP server on stdio...")
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
    finally:
        if sync_manager is not None:
            sync_manager.stop()
        indexer.close()


if __name__ == "__main__":
    main()

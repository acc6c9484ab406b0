"""MCP tools for the convo-search server.

This module defines the tools exposed by the MCP server:
- search_conversations: Natural-language search grouped by conversation
- list_projects: Indexed projects with message counts
- get_conversation_messages: Page through one conversation
- get_conversation_context: A message with its neighbours
- refresh_index: Run an incremental indexing pass now
- index_stats: Row counts of the index
"""

import logging
from datetime import datetime

from fastmcp import FastMCP

from convo_search.config import Config
from convo_search.errors import ConversationSearchError, error_response
from convo_search.indexer import IndexedMessage, Indexer, SearchOptions
from convo_search.search import build_fts_query, format_search_results, parse_query

logger = logging.getLogger(__name__)

# Raw matches fetched per requested conversation, to leave room for grouping
RAW_RESULTS_PER_CONVERSATION = 5
SEARCH_CONTEXT_SIZE = 2


def message_to_dict(message: IndexedMessage) -> dict:
    """Serialize a message for a tool response."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "project_path": message.project_path,
        "project_name": message.project_name,
        "timestamp": message.timestamp.isoformat(),
        "type": message.type,
        "content": message.content,
        "tool_operations": [op.to_dict() for op in message.tool_operations],
        "message_uuid": message.message_uuid,
        "parent_uuid": message.parent_uuid,
    }


def _filters_to_dict(filters: dict) -> dict:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in filters.items()
    }


def register_tools(mcp: FastMCP, indexer: Indexer, config: Config) -> None:
    """Register all tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        indexer: Indexer owning the database
        config: Configuration (for the result cap)
    """
    db = indexer.db

    @mcp.tool()
    def search_conversations(
        query: str,
        limit: int = 10,
        include_context: bool = True,
    ) -> dict:
        """Search through past conversation history.

        The query is plain language. Phrases such as "in project X",
        "not in X", "today", "yesterday", "last week", "created file X" or
        "bash command" become filters.

        Args:
            query: What to look for (e.g. "where did we create auth.js",
                "fix CORS error in project billing yesterday")
            limit: Maximum number of conversations to return (default: 10)
            include_context: Include neighbouring messages for each match

        Returns:
            Dict with:
            - query: The original query
            - fts_query: The full-text expression that was run
            - filters: Filters extracted from the query
            - total_matches: Number of matching messages
            - total_conversations: Number of matching conversations
            - conversations: Conversations with their matching messages
              (highlights marked with <mark>...</mark>) and a resume command
        """
        if not query or not query.strip():
            return {"error": "Query must be a non-empty string", "code": "INVALID_ARGUMENT"}

        effective_limit = max(1, min(limit, config.max_results))

        parsed = parse_query(query)
        fts_query = build_fts_query(parsed.search_query)
        filters = parsed.filters.as_dict()

        options = SearchOptions(
            query=fts_query,
            limit=effective_limit * RAW_RESULTS_PER_CONVERSATION,
            include_context=include_context,
            context_size=SEARCH_CONTEXT_SIZE,
            **filters,
        )

        try:
            results = db.search(options)
        except ConversationSearchError as e:
            logger.warning("Search failed for %r: %s", query, e)
            return error_response(e)

        summary = format_search_results(results, effective_limit)
        return {
            "query": query,
            "fts_query": fts_query,
            "filters": _filters_to_dict(filters),
            "total_matches": summary.total_matches,
            "total_conversations": summary.total_conversations,
            "conversations": [c.to_dict() for c in summary.conversations],
        }

    @mcp.tool()
    def list_projects() -> list[dict]:
        """List all indexed projects.

        Returns:
            List of projects with:
            - path: Project path (working directory of the conversations)
            - name: Project name
            - message_count: Number of indexed messages
        """
        return [
            {"path": p.path, "name": p.name, "message_count": p.message_count}
            for p in db.get_projects()
        ]

    @mcp.tool()
    def get_conversation_messages(
        conversation_id: str,
        limit: int = 20,
        start_from: int = 0,
    ) -> list[dict]:
        """Read messages of one conversation in chronological order.

        Args:
            conversation_id: Conversation (session) id
            limit: Number of messages to return (default: 20)
            start_from: Offset from the first message; negative values count
                from the end (-1 ends at the last message)

        Returns:
            List of messages, oldest first.
        """
        messages = db.get_conversation_messages(conversation_id, limit, start_from)
        return [message_to_dict(m) for m in messages]

    @mcp.tool()
    def get_conversation_context(message_id: str, context_size: int = 5) -> dict:
        """Get a message together with the messages around it.

        Args:
            message_id: Message id as returned by other tools
            context_size: Messages to include before and after (default: 5)

        Returns:
            Dict with message, before and after; or an error if not found.
        """
        message = db.get_message(message_id)
        if message is None:
            return {"error": f"Message not found: {message_id}", "code": "NOT_FOUND"}

        context = db.get_message_context(message, context_size)
        return {
            "message": message_to_dict(message),
            "before": [message_to_dict(m) for m in context.before],
            "after": [message_to_dict(m) for m in context.after],
        }

    @mcp.tool()
    async def refresh_index() -> dict:
        """Index new and changed conversation files now.

        Returns:
            Dict with files_indexed and messages_indexed, or an error (for
            instance when a pass is already running).
        """
        logger.info("Manual index refresh requested")
        try:
            result = await indexer.index_all(logger.info)
        except ConversationSearchError as e:
            logger.warning("Index refresh failed: %s", e)
            return error_response(e)

        return {
            "files_indexed": result.files_indexed,
            "messages_indexed": result.messages_indexed,
        }

    @mcp.tool()
    def index_stats() -> dict:
        """Report how much is indexed.

        Returns:
            Dict with messages, fts_rows, files and whether a pass is running.
        """
        stats = db.get_stats()
        return {
            "messages": stats.messages,
            "fts_rows": stats.fts_rows,
            "files": stats.files,
            "indexing": indexer.is_indexing,
        }

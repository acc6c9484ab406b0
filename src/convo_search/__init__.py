"""
convo-search - MCP server for searching past coding-assistant conversations.

Indexes the JSONL transcripts under ~/.claude/projects into a local SQLite
FTS5 database and answers natural-language queries over them.

Stack:
- Python + FastMCP
- SQLite FTS5 (search index)
- stdio transport
- JSONL transcripts (source of truth)
"""

__version__ = "0.1.0"

"""Query interpretation and result grouping for conversation search."""

from convo_search.search.formatter import (
    ConversationResult,
    ResumeDescriptor,
    SearchSummary,
    format_search_results,
)
from convo_search.search.query import ParsedQuery, QueryFilters, build_fts_query, parse_query

__all__ = [
    "ConversationResult",
    "ParsedQuery",
    "QueryFilters",
    "ResumeDescriptor",
    "SearchSummary",
    "build_fts_query",
    "format_search_results",
    "parse_query",
]

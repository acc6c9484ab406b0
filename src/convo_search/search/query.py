"""Natural-language query parsing.

Turns a phrase like "where did we fix the cors error in project billing
yesterday" into a cleaned search string plus structured filters, and the
cleaned string into an FTS5 MATCH expression.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

# Always-matching expression used when nothing searchable is left
FALLBACK_FTS_QUERY = "a OR the"

STOP_WORDS = (
    "where",
    "when",
    "what",
    "how",
    "did",
    "we",
    "i",
    "the",
    "a",
    "an",
    "was",
    "were",
    "discuss",
    "discussed",
    "conversation",
    "about",
)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# A project reference: a quoted name or a bare word with dots and hyphens,
# never a relative date or a stop word ("bug in the parser")
_REF = (
    r"(?!(?:today|yesterday|last\s+week)\b)"
    r"(?!(?:" + "|".join(STOP_WORDS) + r")(?:\s|$))"
    r"(\"[^\"]+\"|'[^']+'|[\w.-]+)"
)

FILE_CREATE_PATTERN = re.compile(
    r"\b(?:created?|new|wrote|write|written)\s+(?:file\s+)?(\S+\.\w+)",
    re.IGNORECASE,
)
FILE_EDIT_PATTERN = re.compile(
    r"\b(?:edit(?:ed)?|modif(?:y|ied)|changed?|updated?)\s+(?:file\s+)?(\S+\.\w+)",
    re.IGNORECASE,
)
EXCLUDE_PATTERN = re.compile(
    rf"\b(?:not\s+in|exclude|except)\s+(?:project\s+)?{_REF}",
    re.IGNORECASE,
)
INCLUDE_PATTERN = re.compile(
    rf"\b(?:in|from)\s+(?:project\s+)?{_REF}(?:\s+project\b)?",
    re.IGNORECASE,
)
TODAY_PATTERN = re.compile(r"\btoday\b", re.IGNORECASE)
YESTERDAY_PATTERN = re.compile(r"\byesterday\b", re.IGNORECASE)
LAST_WEEK_PATTERN = re.compile(r"\blast\s+week\b", re.IGNORECASE)
ERROR_PATTERN = re.compile(r"\berror\b", re.IGNORECASE)
COMMAND_PATTERN = re.compile(r"\b(?:command|bash|terminal)\b", re.IGNORECASE)

_STOP_WORDS_PATTERN = re.compile(r"\b(?:" + "|".join(STOP_WORDS) + r")\b")
_NON_WORD = re.compile(r"[^\w\s]")
_FTS_OPERATORS = frozenset({"AND", "OR", "NOT", "NEAR"})
_BOOLEAN_OPERATORS = frozenset({"AND", "OR", "NOT"})
_QUOTED_PHRASE = re.compile(r'("[^"]*")')
_WORD = re.compile(r"\w")


@dataclass
class QueryFilters:
    """Structured filters extracted from a natural-language query."""

    project_path: str | None = None
    exclude_project_path: str | None = None
    conversation_id: str | None = None
    exclude_conversation_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    message_type: str | None = None

    def as_dict(self) -> dict:
        """Only the filters that are set."""
        return {key: value for key, value in vars(self).items() if value is not None}


@dataclass
class ParsedQuery:
    search_query: str
    filters: QueryFilters = field(default_factory=QueryFilters)


def is_uuid(value: str) -> bool:
    """Check for the canonical 8-4-4-4-12 hex form of a conversation id."""
    return bool(UUID_PATTERN.match(value))


def normalize_project_path(project_ref: str) -> str:
    """
    Normalize a project reference for substring matching against stored paths.

    "Billing Service" -> "billing-service", "ai.value.to" -> "ai-value-to"
    """
    project_ref = re.sub(r"['\"]", "", project_ref).strip()
    project_ref = re.sub(r"\s+", "-", project_ref)
    project_ref = project_ref.replace(".", "-")
    return project_ref.lower()


def _consume(text: str, match: re.Match[str]) -> str:
    return (text[: match.start()] + " " + text[match.end() :]).strip()


def _strip_quotes(value: str) -> str:
    return value.strip("\"'")


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def clean_query(query: str) -> str:
    """Lowercase, drop stop words, and quote path-like tokens."""
    cleaned = _STOP_WORDS_PATTERN.sub("", query.lower())
    tokens = cleaned.split()

    quoted = []
    for token in tokens:
        if ("/" in token or "." in token) and not token.startswith('"'):
            token = f'"{token}"'
        quoted.append(token)
    return " ".join(quoted)


def parse_query(text: str, now: datetime | None = None) -> ParsedQuery:
    """
    Extract filters from a natural-language query.

    Each recognized phrase is removed before the next pattern runs:

    1. "created/wrote file X" or "edited/modified file X" replaces the whole
       search string with a Write/Edit lookup for X.
    2. "not in / exclude / except <ref>" sets an exclusion filter.
    3. "in / from [project] <ref>" sets an inclusion filter, unless step 2
       already matched.
    4. The first of "today", "yesterday", "last week" sets a date range.
    5. "error" is only used when nothing else is left; "command", "bash" or
       "terminal" restricts to tool_use messages and replaces the search
       string with "bash".

    A <ref> in UUID form filters on conversation id, anything else on a
    fragment of the project path.

    Args:
        text: The user's query
        now: Reference time for relative dates (defaults to local now)
    """
    now = now or datetime.now()
    filters = QueryFilters()
    remaining = text
    override: str | None = None

    create_match = FILE_CREATE_PATTERN.search(remaining)
    edit_match = FILE_EDIT_PATTERN.search(remaining)
    if create_match:
        override = f'Write "{_strip_quotes(create_match.group(1))}"'
        remaining = _consume(remaining, create_match)
    elif edit_match:
        override = f'Edit "{_strip_quotes(edit_match.group(1))}"'
        remaining = _consume(remaining, edit_match)

    exclude_match = EXCLUDE_PATTERN.search(remaining)
    if exclude_match:
        ref = exclude_match.group(1).rstrip(".")
        if is_uuid(ref):
            filters.exclude_conversation_id = ref
        else:
            filters.exclude_project_path = normalize_project_path(ref)
        remaining = _consume(remaining, exclude_match)
    else:
        include_match = INCLUDE_PATTERN.search(remaining)
        if include_match:
            ref = include_match.group(1).rstrip(".")
            if is_uuid(ref):
                filters.conversation_id = ref
            else:
                filters.project_path = normalize_project_path(ref)
            remaining = _consume(remaining, include_match)

    today = _start_of_day(now)
    today_match = TODAY_PATTERN.search(remaining)
    yesterday_match = YESTERDAY_PATTERN.search(remaining)
    last_week_match = LAST_WEEK_PATTERN.search(remaining)
    if today_match:
        filters.date_from = today
        remaining = _consume(remaining, today_match)
    elif yesterday_match:
        filters.date_from = today - timedelta(days=1)
        filters.date_to = today
        remaining = _consume(remaining, yesterday_match)
    elif last_week_match:
        filters.date_from = now - timedelta(days=7)
        remaining = _consume(remaining, last_week_match)

    search_query = override if override is not None else remaining
    if ERROR_PATTERN.search(remaining):
        if not clean_query(search_query):
            search_query = "error"
    elif COMMAND_PATTERN.search(remaining):
        filters.message_type = "tool_use"
        search_query = "bash"

    return ParsedQuery(search_query=clean_query(search_query), filters=filters)


def _bare_words(text: str, keep_operators: bool = False) -> list[str]:
    neutralized = _FTS_OPERATORS - _BOOLEAN_OPERATORS if keep_operators else _FTS_OPERATORS
    words = [word for word in _NON_WORD.sub(" ", text).split() if len(word) > 1]
    # Bare upper-case keywords would be read as operators
    return [word.lower() if word in neutralized else word for word in words]


def _join_terms(terms: list[str]) -> str:
    """AND together terms, keeping an explicit operator found between two terms."""
    expression = []
    for term in terms:
        if term in _BOOLEAN_OPERATORS:
            if expression and expression[-1] not in _BOOLEAN_OPERATORS:
                expression.append(term)
            continue
        if expression and expression[-1] not in _BOOLEAN_OPERATORS:
            expression.append("AND")
        expression.append(term)

    if expression and expression[-1] in _BOOLEAN_OPERATORS:
        expression.pop()
    return " ".join(expression)


def build_fts_query(search_query: str) -> str:
    """
    Convert a cleaned search string into an FTS5 MATCH expression.

    Complete ``"..."`` phrases are kept as exact phrases, and when one is
    present upper-case ``AND``/``OR``/``NOT`` between terms stay operators.
    Outside the phrases punctuation splits words, one-letter words are
    dropped and a stray quote is treated like any other punctuation. Terms
    with no operator between them are AND-ed. Empty input falls back to an
    expression that matches almost everything.
    """
    if not search_query or not search_query.strip():
        return FALLBACK_FTS_QUERY

    # split() with a group alternates bare text and phrases
    parts = _QUOTED_PHRASE.split(search_query)
    has_phrases = len(parts) > 1

    terms = []
    for index, part in enumerate(parts):
        if index % 2 == 0:
            terms.extend(_bare_words(part, keep_operators=has_phrases))
        elif _WORD.search(part):
            terms.append(part)

    expression = _join_terms(terms)
    return expression or FALLBACK_FTS_QUERY

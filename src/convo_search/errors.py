"""Error hierarchy for convo-search.

Every error carries a short machine-readable ``code`` and a ``user_message``
that the MCP tools hand back to the caller instead of a traceback.

    ConversationSearchError
    ├── DatabaseError
    │   └── StorageInitError
    ├── SearchError
    ├── IndexingError
    │   └── IndexingInProgressError
    ├── FileAccessError
    └── ConfigurationError
"""


class ConversationSearchError(Exception):
    """Base class for all convo-search errors."""

    code = "UNKNOWN_ERROR"
    user_message = "An unexpected error occurred."

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class DatabaseError(ConversationSearchError):
    """A database operation failed."""

    code = "DATABASE_ERROR"
    user_message = (
        "Database operation failed. Try refreshing the index or check if the "
        "database file is accessible."
    )


class StorageInitError(DatabaseError):
    """The backing store could not be opened or created."""

    def __init__(self, db_path: str, reason: str):
        super().__init__(f"Failed to initialize database at {db_path}: {reason}")
        self.db_path = db_path


class SearchError(ConversationSearchError):
    """The full-text engine rejected or failed to run a query."""

    code = "SEARCH_ERROR"
    user_message = (
        "Search failed. Try simplifying your query or check if the database "
        "is properly indexed."
    )

    def __init__(self, query: str, reason: str):
        super().__init__(f"Search failed for query {query!r}: {reason}")
        self.query = query


class IndexingError(ConversationSearchError):
    """Indexing a file or a whole pass failed."""

    code = "INDEXING_ERROR"
    user_message = (
        "Failed to index conversations. Check if the projects directory exists "
        "and contains valid conversation files."
    )


class IndexingInProgressError(IndexingError):
    """Raised when an indexing pass is requested while one is running."""

    code = "INDEXING_IN_PROGRESS"
    user_message = (
        "Indexing is already in progress. Please wait for the current "
        "operation to complete."
    )

    def __init__(self) -> None:
        super().__init__("Indexing is already in progress")


class FileAccessError(ConversationSearchError):
    """A transcript file could not be read or stat'ed."""

    code = "FILE_ACCESS_ERROR"
    user_message = (
        "Cannot access conversation file. Check that the file exists and is "
        "readable."
    )

    def __init__(self, file_path: str, reason: str):
        super().__init__(f"Failed to access file {file_path}: {reason}")
        self.file_path = file_path


class ConfigurationError(ConversationSearchError):
    """An environment setting is invalid."""

    code = "CONFIG_ERROR"

    def __init__(self, setting: str, reason: str):
        super().__init__(
            f"Invalid {setting}: {reason}",
            user_message=(
                f"Configuration issue with {setting}. Please check your "
                "environment variables."
            ),
        )
        self.setting = setting


def error_response(error: Exception) -> dict:
    """Build the payload returned by a tool when an operation fails."""
    if isinstance(error, ConversationSearchError):
        return {"error": error.user_message, "code": error.code, "detail": str(error)}
    return {
        "error": ConversationSearchError.user_message,
        "code": ConversationSearchError.code,
        "detail": str(error),
    }

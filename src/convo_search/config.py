"""Settings for convo-search, read from the environment.

Every setting has a default, so an empty environment gives a working setup
rooted at ~/.claude.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from convo_search.errors import ConfigurationError


def _int_from_env(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(name, f"expected an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(name, f"must be >= {minimum}, got {value}")
    return value


@dataclass
class Config:
    """Resolved settings."""

    projects_dir: Path
    db_path: Path
    index_interval: int  # Seconds between background passes, 0 disables
    max_results: int
    debug: bool

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        claude_home = Path.home() / ".claude"

        projects_dir = Path(
            os.getenv("CLAUDE_PROJECTS_DIR", str(claude_home / "projects"))
        ).expanduser()
        db_path = Path(
            os.getenv("CONVERSATION_DB_PATH", str(claude_home / "conversation-search.db"))
        ).expanduser()

        index_interval = _int_from_env("INDEX_INTERVAL", 300, minimum=0)
        max_results = _int_from_env("MAX_RESULTS", 20, minimum=1)

        debug = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")

        return cls(
            projects_dir=projects_dir,
            db_path=db_path,
            index_interval=index_interval,
            max_results=max_results,
            debug=debug,
        )


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None

"""Runtime configuration loaded from COUNCIL_* environment variables."""

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class CouncilSettings(BaseSettings):
    """Councilflow runtime settings.

    All fields are read from environment variables with the ``COUNCIL_`` prefix.
    For example, ``COUNCIL_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    Timing fields are in milliseconds to match the units used inside pipeline
    documents (``execution.timeout`` and friends).
    """

    model_config = SettingsConfigDict(
        env_prefix="COUNCIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Root directory for stored runs and exported pipelines."""

    data_prefix: str | None = None
    """Optional namespace inserted under ``data_root``."""

    # -- Engine ----------------------------------------------------------------
    history_limit: int = 10
    retry_backoff_ms: int = 1000
    """Linear backoff unit: retry *n* waits ``n * retry_backoff_ms``."""

    trigger_poll_ms: int = 50
    pause_poll_ms: int = 100

    # -- Template resolver -----------------------------------------------------
    preserve_unresolved: bool = True
    """Keep ``{{token}}`` text verbatim when it cannot be resolved."""

    unresolved_placeholder: str = ""

    # -- LLM endpoint ----------------------------------------------------------
    llm_base_url: str | None = None
    """OpenAI-compatible base URL used by the bundled HTTP client."""

    llm_api_key: SecretStr | None = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout: float = 120.0


def get_settings() -> CouncilSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> CouncilSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return CouncilSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)

"""Centralised settings for the Depthwise engine.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("DEPTHWISE_WORKSPACE", Path.home() / ".depthwise_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "depthwise.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    cli_config_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("DEPTHWISE_CLI_DIR", Path.home() / ".depthwise_cli")
        )
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper()
    )

    # ------------------------------------------------------------------
    # Content generator
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "ollama")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    )
    anthropic_chat_model: str = field(
        default_factory=lambda: os.environ.get(
            "ANTHROPIC_CHAT_MODEL", "claude-sonnet-4-20250514"
        )
    )
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )
    anthropic_base_url: str = field(
        default_factory=lambda: os.environ.get(
            "ANTHROPIC_BASE_URL", "https://api.anthropic.com"
        )
    )
    generator_max_tokens: int = field(
        default_factory=lambda: int(os.environ.get("GENERATOR_MAX_TOKENS", "3000"))
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "60.0"))
    )

    # ------------------------------------------------------------------
    # Exploration policy
    # ------------------------------------------------------------------
    anonymous_max_depth: int = field(
        default_factory=lambda: int(os.environ.get("ANONYMOUS_MAX_DEPTH", "2"))
    )
    quota_window_days: int = field(
        default_factory=lambda: int(os.environ.get("QUOTA_WINDOW_DAYS", "30"))
    )
    max_query_length: int = field(
        default_factory=lambda: int(os.environ.get("MAX_QUERY_LENGTH", "500"))
    )
    max_focus_term_length: int = field(
        default_factory=lambda: int(os.environ.get("MAX_FOCUS_TERM_LENGTH", "120"))
    )

    # ------------------------------------------------------------------
    # Layout / focus view
    # ------------------------------------------------------------------
    layout_profile: str = field(
        default_factory=lambda: os.environ.get("LAYOUT_PROFILE", "desktop")
    )
    focus_depth_threshold: int = field(
        default_factory=lambda: int(os.environ.get("FOCUS_DEPTH_THRESHOLD", "4"))
    )

    # ------------------------------------------------------------------
    # Identity / request context
    # ------------------------------------------------------------------
    auth_secret: str = field(
        default_factory=lambda: os.environ.get("AUTH_SECRET", "depthwise-local-development-signing-key")
    )
    ip_hash_salt: str = field(
        default_factory=lambda: os.environ.get("IP_HASH_SALT", "depthwise-default-ip-salt")
    )

    # ------------------------------------------------------------------
    # Rate limiting (requests per window)
    # ------------------------------------------------------------------
    rate_limit_enabled: bool = field(
        default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", "true")
    )
    rate_limit_window: int = field(
        default_factory=lambda: int(os.environ.get("RATE_LIMIT_WINDOW", "3600"))
    )
    create_limit_anonymous: int = field(
        default_factory=lambda: int(os.environ.get("CREATE_LIMIT_ANONYMOUS", "10"))
    )
    create_limit_authenticated: int = field(
        default_factory=lambda: int(os.environ.get("CREATE_LIMIT_AUTHENTICATED", "100"))
    )
    explore_limit_anonymous: int = field(
        default_factory=lambda: int(os.environ.get("EXPLORE_LIMIT_ANONYMOUS", "20"))
    )
    explore_limit_authenticated: int = field(
        default_factory=lambda: int(os.environ.get("EXPLORE_LIMIT_AUTHENTICATED", "200"))
    )


def configure_logging(level: str | None = None) -> None:
    """Install a root handler once; later calls only adjust the level."""
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("depthwise").setLevel(level or settings.log_level)


# Module-level singleton, import this everywhere:
#   from depthwise.config import settings
settings = Settings()

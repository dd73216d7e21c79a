"""Application configuration management using Pydantic Settings.

This module provides a centralized configuration class that loads settings
from environment variables (.env file). The online banking password and the
security question answers are wrapped in SecretStr so they never end up in
logs or tool responses.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SELECTORS_PATH = Path(__file__).parent / "selectors.yaml"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from the .env file or environment variables.
    """

    # Banesco Online credentials
    banesco_username: str = Field(default="", description="Online banking user name")
    banesco_password: SecretStr = Field(
        default=SecretStr(""), description="Online banking password"
    )
    security_questions: SecretStr = Field(
        default=SecretStr(""),
        description="Comma-separated keyword:answer pairs, e.g. 'mascota:firulais,madre:maria'",
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=True, description="Run browser in headless mode"
    )
    browser_timeout_ms: int = Field(
        default=30000, description="Navigation timeout in milliseconds"
    )
    browser_block_resources: list[str] = Field(
        default_factory=lambda: ["image", "font", "media"],
        description="Playwright resource types aborted before they hit the network",
    )

    # Login Configuration
    max_modal_retries: int = Field(
        default=2, description="Login attempts allowed when an active-session modal appears"
    )
    persist_session: bool = Field(
        default=True, description="Save the session after a fresh login"
    )

    # Session Store Configuration
    session_db_path: str = Field(
        default=".sessions/sessions.db", description="SQLite session store path"
    )
    session_ttl_hours: int = Field(
        default=24, description="Maximum age of a stored session in hours"
    )

    # Extraction Configuration
    max_pages: int = Field(
        default=10, description="Upper bound on transaction pages followed"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="json", description="Log output format (json or console)"
    )

    # Selector Configuration
    selectors_path: str = Field(
        default=str(DEFAULT_SELECTORS_PATH),
        description="Path to the selectors/markers YAML configuration file",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


def load_selectors(path: str | Path | None = None) -> dict[str, Any]:
    """Load selector probes and page markers from YAML.

    Args:
        path: Path to the selectors file. If None, the packaged file is used.

    Returns:
        Parsed selectors dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    selectors_path = Path(path) if path else DEFAULT_SELECTORS_PATH
    if not selectors_path.exists():
        raise FileNotFoundError(f"Selectors config not found: {selectors_path}")

    with open(selectors_path, encoding="utf-8") as f:
        return yaml.safe_load(f)


# Singleton instance - import this to access settings throughout the application
settings = Settings()

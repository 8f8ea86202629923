"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class SupportInboxSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="SUPPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth credentials
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")
    allow_browser_auth: bool = True

    # Gmail API settings
    query: str = "is:unread"
    max_results: int = 10

    # Database
    database_path: Path = Path("data/support_inbox.db")
    knowledge_path: Path = Path("data/knowledge.json")

    # Model backend
    openai_api_key: str = ""
    openai_model: str = "gpt-3.5-turbo"
    openai_timeout_seconds: float = 30.0
    openai_max_retries: int = 2

    # Pipeline policy
    auto_send_responses: bool = False
    default_tone: str = "professional"
    inter_message_delay_seconds: float = 1.0
    summary_preview_chars: int = 200

    # Rate limiting & retry
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    num_retries: int = 3

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create data and credentials directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.knowledge_path.parent.mkdir(parents=True, exist_ok=True)
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)

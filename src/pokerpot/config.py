"""Configuration management for PokerPot."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="POKERPOT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote data service (PostgREST-style); sync is disabled when unset
    remote_url: str | None = None
    remote_api_key: str | None = None
    remote_timeout: float = 30.0

    # Notification webhook; notifications are only logged when unset
    notification_webhook_url: str | None = None

    # Sync settings
    initial_sync_lookback_days: int = 7  # First pull reaches back this far

    # Acting identity for the CLI
    user_id: str | None = None
    user_name: str | None = None

    # Database path
    database_path: Path = Path.home() / ".pokerpot" / "pokerpot.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def sync_enabled(self) -> bool:
        """True when a remote data service is configured."""
        return bool(self.remote_url and self.remote_api_key)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your POKERPOT_* environment "
            f"variables or .env file.\n"
            f"Error: {e}"
        ) from e

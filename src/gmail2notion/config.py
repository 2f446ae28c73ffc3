"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Notion configuration
    notion_token: str = Field(alias="NOTION_API_KEY")
    notion_database_id: str | None = Field(default=None, alias="NOTION_DATABASE_ID")
    rate_limit_delay: float = Field(default=0.35, description="Seconds between Notion API calls")

    # Storage configuration
    data_dir: Path = Field(default=Path.home() / ".gmail2notion", alias="G2N_DATA_DIR")
    script_store_name: str = Field(default="script_properties.json")
    user_store_name: str = Field(default="user_properties.json")

    # Cache windows, in seconds
    cache_ttl_seconds: int = Field(default=600, description="In-memory mapping cache TTL")
    config_cache_ttl_seconds: int = Field(default=600, description="Cached config record TTL")
    schema_cache_ttl_seconds: int = Field(default=120, description="Database schema cache TTL")

    log_level: str = Field(default="INFO", alias="G2N_LOG_LEVEL")

    @property
    def script_store_path(self) -> Path:
        """Store shared by every user of this installation."""
        return self.data_dir / self.script_store_name

    @property
    def user_store_path(self) -> Path:
        """Per-user backup store."""
        return self.data_dir / "users" / self.user_store_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]

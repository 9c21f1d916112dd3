"""
Application configuration settings.

All configuration is loaded from environment variables (or a local .env file)
with sensible defaults.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    app_name: str = "Barter API"
    api_debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]  # Expo dev clients connect from anywhere

    # Supabase
    supabase_url: str = "http://localhost:54321"
    supabase_key: str = ""
    item_images_bucket: str = "item-images"

    # Catalog
    max_item_images: int = 5

    # Messaging
    message_max_length: int = 1000

    # Discovery feed
    feed_page_size: int = 20
    feed_max_page_size: int = 50
    feed_batch_size: int = 50  # listings read per query while filling a page
    value_tolerance_ratio: float = 0.3
    value_tolerance_min: float = 10.0

    # Friend search
    user_search_limit: int = 10


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

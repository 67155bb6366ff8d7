"""Application configuration."""
import logging
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Service settings, read from ``GANACHE_*`` environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="GANACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP
    bind_host: str = "0.0.0.0"
    bind_port: int = 8080

    # Database
    database_url: str = "sqlite:///ganache.db"

    # Storage
    storage_root: str = "/srv/ganache"
    max_upload_bytes: int = 20 * 1024 * 1024
    max_pixels: int = 50_000_000
    content_max_width: int = 1600
    thumb_max_width: int = 400
    variant_generator: Literal["pillow", "copy"] = "pillow"

    # Paging and limits
    search_default_page_size: int = 30
    search_max_page_size: int = 200
    tags_default_page_size: int = 100
    tags_max_page_size: int = 500
    max_field_length: int = 255

    log_level: str = "INFO"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=LOG_FORMAT,
    )

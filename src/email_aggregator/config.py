"""Configuration management for Email Aggregator.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the EMAIL_AGG_ prefix (e.g., EMAIL_AGG_OLLAMA_HOST).
    """

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_AGG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Ollama Configuration (categorization oracle)
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model used for email categorization",
    )
    ollama_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for Ollama API requests in seconds",
    )

    # Gmail Configuration (forward-cursor provider)
    gmail_user_id: str = Field(
        default="me",
        description="Gmail API user id used for list/get calls",
    )
    gmail_label_ids: list[str] = Field(
        default_factory=lambda: ["INBOX"],
        description="Gmail label ids the listing is restricted to",
    )
    gmail_detail_concurrency: int = Field(
        default=25,
        ge=1,
        description="Maximum number of concurrent Gmail message detail fetches",
    )

    # Outlook Configuration (offset/cursor provider)
    outlook_graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph API base URL",
    )

    # Provider call policy
    provider_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single provider call in seconds",
    )
    provider_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transient provider list failures",
    )
    provider_retry_backoff: float = Field(
        default=0.5,
        ge=0,
        description="Initial backoff between provider retries in seconds (doubled per retry)",
    )

    # Categorization
    categorization_chunk_size: int = Field(
        default=10,
        ge=1,
        description="Number of messages sent to the categorizer per round",
    )
    categorization_concurrency: int = Field(
        default=5,
        ge=1,
        description="Maximum concurrent oracle calls within one batch",
    )

    # Pagination
    default_page_size: int = Field(
        default=25,
        ge=1,
        le=100,
        description="Page size used when the client does not supply one",
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Largest page size a client may request",
    )

    # Storage
    database_path: Path = Field(
        default=Path("email_aggregator.sqlite3"),
        description="Path to the SQLite database storing messages and sync state",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()

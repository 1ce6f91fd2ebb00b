"""
Centralized configuration management for Adjutant services.
Uses Pydantic Settings for validation and type safety.
"""

import json
from functools import lru_cache
from typing import Annotated, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from shared.errors import ConfigurationInvalid


class AppBaseSettings(BaseSettings):
    """Base settings with shared configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class FeedSourceConfig(BaseModel):
    """A configured syndication source."""

    name: str
    url: str
    type: str = "rss"


DEFAULT_FEED_SOURCES = [
    {"name": "Towards Data Science", "url": "https://towardsdatascience.com/feed", "type": "rss"},
    {"name": "Hugging Face Blog", "url": "https://huggingface.co/blog/feed.xml", "type": "rss"},
    {
        "name": "Google DeepMind Blog",
        "url": "https://blog.google/technology/google-deepmind/rss/",
        "type": "rss",
    },
]

DEFAULT_BLOCKED_DOMAINS = [
    "twitter.com",
    "x.com",
    "youtube.com",
    "youtu.be",
    "linkedin.com",
    "facebook.com",
    "instagram.com",
]


class DatabaseSettings(AppBaseSettings):
    """Document store configuration settings."""

    database_url: str = Field(
        default="sqlite:///adjutant.db",
        validation_alias="DATABASE_URL",
    )
    echo: bool = Field(
        default=False,
        validation_alias="DATABASE_ECHO",
    )


class RedisSettings(AppBaseSettings):
    """Redis configuration settings. Redis is optional."""

    redis_url: Optional[str] = Field(
        default=None,
        validation_alias="REDIS_URL",
    )
    redis_timeout: float = Field(
        default=5.0,
        validation_alias="REDIS_TIMEOUT",
    )

    @validator("redis_url", pre=True)
    def blank_url_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class OpenAISettings(AppBaseSettings):
    """OpenAI API configuration settings."""

    api_key: str = Field(
        default="",
        validation_alias="OPENAI_API_KEY",
    )
    filter_model: str = Field(
        default="gpt-4o-mini",
        validation_alias="OPENAI_FILTER_MODEL",
    )
    score_model: str = Field(
        default="gpt-4o",
        validation_alias="OPENAI_SCORE_MODEL",
    )
    max_tokens: int = Field(
        default=1000,
        validation_alias="OPENAI_MAX_TOKENS",
    )
    temperature: float = Field(
        default=0.1,
        validation_alias="OPENAI_TEMPERATURE",
    )
    timeout: float = Field(
        default=60.0,
        validation_alias="OPENAI_TIMEOUT",
    )


class PipelineSettings(AppBaseSettings):
    """Analysis pipeline configuration settings."""

    topic_description: str = Field(
        default="",
        validation_alias="TOPIC_DESCRIPTION",
    )
    feed_sources: Annotated[List[FeedSourceConfig], NoDecode] = Field(
        default=[FeedSourceConfig(**source) for source in DEFAULT_FEED_SOURCES],
        validation_alias="FEED_SOURCES",
    )
    content_max_length: int = Field(
        default=4000,
        validation_alias="CONTENT_MAX_LENGTH",
    )
    min_content_length: int = Field(
        default=50,
        validation_alias="MIN_CONTENT_LENGTH",
    )
    topic_filter_chars: int = Field(
        default=1500,
        validation_alias="TOPIC_FILTER_CHARS",
    )
    max_quality_retries: int = Field(
        default=3,
        validation_alias="MAX_QUALITY_RETRIES",
    )
    worker_concurrency: int = Field(
        default=2,
        validation_alias="WORKER_CONCURRENCY",
    )
    max_items_per_source: int = Field(
        default=50,
        validation_alias="MAX_ITEMS_PER_SOURCE",
    )
    extraction_timeout: float = Field(
        default=30.0,
        validation_alias="EXTRACTION_TIMEOUT",
    )
    extraction_renderer: str = Field(
        default="playwright",
        validation_alias="EXTRACTION_RENDERER",
    )
    blocked_domains: Annotated[List[str], NoDecode] = Field(
        default=DEFAULT_BLOCKED_DOMAINS,
        validation_alias="BLOCKED_DOMAINS",
    )
    retry_delay: float = Field(
        default=1.0,
        validation_alias="RETRY_DELAY",
    )
    retry_backoff_factor: float = Field(
        default=2.0,
        validation_alias="RETRY_BACKOFF_FACTOR",
    )

    @validator("feed_sources", pre=True)
    def parse_feed_sources(cls, v):
        """Accept a JSON list of source objects or a comma-separated URL list."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [
                {"name": urlparse(url.strip()).netloc, "url": url.strip(), "type": "rss"}
                for url in v.split(",")
                if url.strip()
            ]
        return v

    @validator("feed_sources")
    def validate_feed_sources(cls, v):
        for source in v:
            parsed = urlparse(source.url)
            if parsed.scheme not in ["http", "https"] or not parsed.netloc:
                raise ValueError(f"Invalid feed URL: {source.url}")
        return v

    @validator("blocked_domains", pre=True)
    def parse_list_from_string(cls, v):
        """Parse comma-separated string into list if needed."""
        if isinstance(v, str):
            return [item.strip().lower() for item in v.split(",") if item.strip()]
        return v

    @validator("worker_concurrency")
    def clamp_concurrency(cls, v):
        return max(1, min(v, 4))

    @validator("extraction_renderer")
    def validate_renderer(cls, v):
        if v not in ("playwright", "http"):
            raise ValueError("EXTRACTION_RENDERER must be 'playwright' or 'http'")
        return v


class ProfileSettings(AppBaseSettings):
    """Profile learner configuration settings."""

    max_items: int = Field(
        default=15,
        validation_alias="PROFILE_MAX_ITEMS",
    )
    min_item_length: int = Field(
        default=5,
        validation_alias="PROFILE_MIN_ITEM_LENGTH",
    )
    min_relevant_ratings: int = Field(
        default=2,
        validation_alias="MIN_RELEVANT_RATINGS",
    )
    min_not_relevant_ratings: int = Field(
        default=2,
        validation_alias="MIN_NOT_RELEVANT_RATINGS",
    )
    max_attempts: int = Field(
        default=3,
        validation_alias="LEARNER_MAX_ATTEMPTS",
    )
    lock_timeout: float = Field(
        default=300.0,
        validation_alias="LEARNER_LOCK_TIMEOUT",
    )


class LoggingSettings(AppBaseSettings):
    """Logging configuration settings."""

    level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    include_correlation_id: bool = Field(
        default=True,
        validation_alias="LOG_INCLUDE_CORRELATION_ID",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="JSON_LOGS",
    )


class Settings(AppBaseSettings):
    """Main settings class that combines all configuration sections."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    profile: ProfileSettings = Field(default_factory=ProfileSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    service_name: str = Field(
        default="adjutant",
        validation_alias="SERVICE_NAME",
    )
    environment: str = Field(
        default="development",
        validation_alias="ENVIRONMENT",
    )
    version: str = Field(
        default="1.0.0",
        validation_alias="SERVICE_VERSION",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def require_model_credentials(settings: Settings) -> None:
    """Raise ConfigurationInvalid when the model gateway cannot authenticate."""
    if not settings.openai.api_key.strip():
        raise ConfigurationInvalid("OPENAI_API_KEY is not configured")


def require_topic(settings: Settings) -> None:
    """Raise ConfigurationInvalid when no topic description is configured."""
    if not settings.pipeline.topic_description.strip():
        raise ConfigurationInvalid("TOPIC_DESCRIPTION is not configured")

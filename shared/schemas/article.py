import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field, model_validator


class ContentSource(str, Enum):
    EXCERPT = "excerpt"
    EXTRACTED = "extracted"
    FAILED = "failed"


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Relevance(str, Enum):
    UNRATED = "unrated"
    RELEVANT = "relevant"
    NOT_RELEVANT = "not_relevant"


class Category(str, Enum):
    NEW_TOOL = "New Tool"
    TUTORIAL = "Tutorial"
    RESEARCH = "Research"
    ANALYSIS = "Analysis"
    OPINION = "Opinion"


TOPIC_FILTERED_SUMMARY = "Article not relevant to user topic interests"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_url(url: str) -> str:
    """Lowercase scheme and host, drop the fragment and surrounding whitespace."""
    parts = urlsplit(url.strip())
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, "")
    )


def article_id(url: str) -> str:
    """Stable content-addressed identifier for an article URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


class Article(BaseModel):
    """One ingested, uniquely identified article with extraction and scoring metadata."""

    id: str = Field(..., description="SHA-256 of the normalized URL")
    url: str = Field(..., description="Canonical URL")
    title: str = Field(..., description="Article title")
    author: Optional[str] = Field(None, description="Byline from the feed or the page")
    source_name: str = Field(..., description="Name of the feed the article came from")
    rss_excerpt: str = Field("", description="Plain-text excerpt supplied by the feed")
    full_content_text: Optional[str] = Field(None, description="Extracted main-content text")
    content_source: ContentSource = ContentSource.EXCERPT
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    extraction_error: Optional[str] = None
    content_length: int = 0
    published_at: Optional[datetime] = None
    fetched_at: datetime = Field(default_factory=utcnow)
    ai_summary: Optional[str] = None
    ai_score: Optional[float] = Field(None, ge=1, le=10)
    ai_category: Optional[Category] = None
    relevance: Relevance = Relevance.UNRATED
    rated_at: Optional[datetime] = None
    topic_filtered: bool = False
    topic_filtered_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_score_policy(self) -> "Article":
        if self.topic_filtered and self.ai_score is not None:
            raise ValueError("topic-filtered articles cannot carry an ai_score")
        return self

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Article":
        return cls.model_validate(doc)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage; unset fields are omitted rather than written as null."""
        return self.model_dump(mode="json", exclude_none=True)

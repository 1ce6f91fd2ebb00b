from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RawFeedItem(BaseModel):
    version: str = Field("1.0", description="Schema version")
    title: str = Field("", description="Item title")
    url: str = Field("", description="Link to the full article")
    excerpt: str = Field("", description="Plain-text description or content from the feed")
    author: Optional[str] = Field(None, description="Item author, when the feed supplies one")
    published_at: Optional[datetime] = Field(None, description="Original publication timestamp")
    source: str = Field(..., description="Name of the feed source")

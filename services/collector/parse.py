from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

import feedparser
import httpx

from shared.app_logging.logger import get_logger
from shared.config.settings import FeedSourceConfig, get_settings
from shared.schemas.feed import RawFeedItem
from shared.utils.retry import async_retry
from shared.utils.text import strip_html

logger = get_logger("collector.parse")

FEED_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; Adjutant/1.0; +feed-reader)"}


def parse_timestamp(ts_raw: str) -> Optional[datetime]:
    """
    Try ISO8601 first, then fall back to RFC-style dates.
    Returns an aware UTC datetime, or None if parsing fails.
    """
    if not isinstance(ts_raw, str) or not ts_raw.strip():
        return None

    # ISO: e.g. “2025-07-16T20:54:01+00:00” or “2025-07-16T20:54:01Z”
    try:
        dt = datetime.fromisoformat(ts_raw.strip().replace("Z", "+00:00"))
    except ValueError:
        # RFC: e.g. “Wed, 16 Jul 2025 20:54:01 +0000”
        try:
            dt = parsedate_to_datetime(ts_raw)
        except (TypeError, ValueError):
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _entry_content(item) -> str:
    content = item.get("content")
    if content:
        return content[0].get("value", "") if isinstance(content[0], dict) else getattr(content[0], "value", "")
    return item.get("description") or item.get("summary") or ""


def parse_feed(data, source: str) -> List[RawFeedItem]:
    """Parse feed bytes (or a URL) into raw items. Items with neither link nor content are dropped."""
    feed = feedparser.parse(data)
    if getattr(feed, "bozo", False) and not feed.entries:
        logger.warning(f"⚠️ Feed {source} could not be parsed: {getattr(feed, 'bozo_exception', 'unknown error')}")

    items = []
    for item in feed.entries:
        link = (item.get("link") or "").strip()
        excerpt = strip_html(_entry_content(item))
        if not link and not excerpt:
            logger.debug(f"Dropping item without link or content from {source}")
            continue

        published = None
        if item.get("published_parsed"):
            published = datetime(*item.published_parsed[:6], tzinfo=timezone.utc)
        else:
            published = parse_timestamp(item.get("published") or item.get("updated") or "")

        items.append(
            RawFeedItem(
                title=strip_html(item.get("title") or "") or link,
                url=link,
                excerpt=excerpt,
                author=(item.get("author") or None),
                published_at=published,
                source=source,
            )
        )

    return items


@async_retry(retryable_exceptions=(httpx.TransportError, httpx.HTTPStatusError))
async def fetch_feed(url: str) -> bytes:
    """Download a feed document."""
    settings = get_settings()
    async with httpx.AsyncClient(
        timeout=settings.pipeline.extraction_timeout,
        follow_redirects=True,
        headers=FEED_HEADERS,
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content


async def collect_source(source: FeedSourceConfig) -> List[RawFeedItem]:
    """Fetch and parse one configured source, capped to the per-source item limit."""
    settings = get_settings()
    data = await fetch_feed(source.url)
    items = parse_feed(data, source.name)
    logger.info(f"📄 Found {len(items)} items in {source.name}")
    return items[: settings.pipeline.max_items_per_source]

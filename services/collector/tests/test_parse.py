# services/collector/tests/test_parse.py

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from services.collector import parse
from services.collector.parse import collect_source, parse_feed, parse_timestamp
from shared.config.settings import FeedSourceConfig

VALID_ENTRY = {
    "title": "Valid Article",
    "link": "https://example.com/valid",
    "description": "<p>Summary <b>here</b></p>",
    "author": "Sam Writer",
    "published_parsed": (2025, 7, 20, 12, 0, 0, 0, 0, 0),
}
NO_LINK_WITH_CONTENT = {
    "title": "Linkless",
    "description": "Some text but no link",
}
EMPTY_ENTRY = {
    "title": "Nothing here",
}

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <item>
      <title>First &amp; foremost</title>
      <link>https://blog.example/first</link>
      <description>&lt;p&gt;Hello &lt;em&gt;world&lt;/em&gt;&lt;/p&gt;</description>
      <pubDate>Wed, 16 Jul 2025 20:54:01 +0000</pubDate>
    </item>
    <item>
      <title>Second</title>
      <link>https://blog.example/second</link>
      <description>Plain text</description>
    </item>
  </channel>
</rss>
"""


class DummyEntry(SimpleNamespace):
    """A minimal FeedParserDict stand-in: supports .get() and attribute access."""

    def get(self, key, default=None):
        return getattr(self, key, default)


class DummyFeed:
    def __init__(self, entries):
        self.entries = [DummyEntry(**e) for e in entries]
        self.bozo = False


def test_parse_keeps_items_with_link_or_content(monkeypatch):
    monkeypatch.setattr(
        "services.collector.parse.feedparser.parse",
        lambda data: DummyFeed([VALID_ENTRY, NO_LINK_WITH_CONTENT, EMPTY_ENTRY]),
    )

    items = parse_feed(b"<rss/>", "TestSource")

    assert len(items) == 2
    first = items[0]
    assert first.title == "Valid Article"
    assert first.url == "https://example.com/valid"
    assert first.excerpt == "Summary here"
    assert first.author == "Sam Writer"
    assert first.published_at == datetime(2025, 7, 20, 12, 0, tzinfo=timezone.utc)
    assert first.source == "TestSource"
    # kept so the run can count it as skipped
    assert items[1].url == ""


def test_parse_real_rss_document():
    items = parse_feed(RSS, "Example")

    assert [i.url for i in items] == ["https://blog.example/first", "https://blog.example/second"]
    assert items[0].title == "First & foremost"
    assert items[0].excerpt == "Hello world"
    assert items[0].published_at == datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)
    assert items[1].published_at is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-07-16T20:54:01Z", datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)),
        ("2025-07-16T22:54:01+02:00", datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)),
        ("Wed, 16 Jul 2025 20:54:01 +0000", datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)),
        ("not a date", None),
        ("", None),
    ],
)
def test_parse_timestamp(raw, expected):
    assert parse_timestamp(raw) == expected


@pytest.mark.asyncio
async def test_collect_source_caps_items(settings, monkeypatch):
    settings.pipeline.max_items_per_source = 1

    async def fake_fetch(url):
        assert url == "https://blog.example/feed.xml"
        return RSS

    monkeypatch.setattr(parse, "fetch_feed", fake_fetch)

    items = await collect_source(FeedSourceConfig(name="Example", url="https://blog.example/feed.xml"))

    assert len(items) == 1
    assert items[0].source == "Example"

import pytest

from shared.config.settings import (
    PipelineSettings,
    Settings,
    require_model_credentials,
    require_topic,
)
from shared.errors import ConfigurationInvalid


def test_defaults_include_original_sources(monkeypatch):
    monkeypatch.delenv("FEED_SOURCES", raising=False)
    pipeline = PipelineSettings()
    assert [s.name for s in pipeline.feed_sources] == [
        "Towards Data Science",
        "Hugging Face Blog",
        "Google DeepMind Blog",
    ]
    assert pipeline.content_max_length == 4000
    assert pipeline.min_content_length == 50


def test_feed_sources_from_comma_list(monkeypatch):
    monkeypatch.setenv("FEED_SOURCES", "https://a.example/feed, https://b.example/rss")
    pipeline = PipelineSettings()
    assert [s.url for s in pipeline.feed_sources] == ["https://a.example/feed", "https://b.example/rss"]
    assert pipeline.feed_sources[0].name == "a.example"


def test_feed_sources_from_json(monkeypatch):
    monkeypatch.setenv("FEED_SOURCES", '[{"name": "Blog", "url": "https://blog.example/feed"}]')
    pipeline = PipelineSettings()
    assert pipeline.feed_sources[0].name == "Blog"
    assert pipeline.feed_sources[0].type == "rss"


def test_invalid_feed_url_rejected(monkeypatch):
    monkeypatch.setenv("FEED_SOURCES", "ftp://nope.example/feed")
    with pytest.raises(ValueError):
        PipelineSettings()


def test_worker_concurrency_is_clamped(monkeypatch):
    monkeypatch.setenv("WORKER_CONCURRENCY", "32")
    assert PipelineSettings().worker_concurrency == 4


def test_blocked_domains_from_string(monkeypatch):
    monkeypatch.setenv("BLOCKED_DOMAINS", "Example.com, paywall.example")
    assert PipelineSettings().blocked_domains == ["example.com", "paywall.example"]


def test_missing_credentials_are_fatal(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("TOPIC_DESCRIPTION", "")
    settings = Settings()
    with pytest.raises(ConfigurationInvalid):
        require_model_credentials(settings)
    with pytest.raises(ConfigurationInvalid):
        require_topic(settings)

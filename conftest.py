import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config.settings import get_settings
from shared.database.base import Base
from shared.database.models.document import Document  # noqa: F401
from shared.database.store import SQLDocumentStore


class DummyResponse:
    def __init__(self, content):
        # the real .choices[0].message.content
        msg = type("M", (), {"content": content})
        self.choices = [type("C", (), {"message": msg})]


class ScriptedClient:
    """Stands in for AsyncOpenAI: chat.completions.create() replays scripted replies per model.

    The last reply for a model repeats once the script runs out. Exceptions
    in the script are raised instead of returned.
    """

    def __init__(self, replies):
        self.chat = self
        self.completions = self
        self.replies = {model: list(items) for model, items in replies.items()}
        self.calls = []

    async def create(self, model, messages, **kw):
        self.calls.append((model, messages[0]["content"]))
        queue = self.replies.get(model)
        if not queue:
            raise AssertionError(f"unexpected call to {model}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return DummyResponse(item)

    def prompts_for(self, model):
        return [prompt for called, prompt in self.calls if called == model]


class DummyExtractor:
    def __init__(self, result):
        self.result = result
        self.urls = []

    async def extract(self, url):
        self.urls.append(url)
        return self.result


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("TOPIC_DESCRIPTION", "machine learning engineering")
    monkeypatch.setenv("RETRY_DELAY", "0")
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("FEED_SOURCES", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    yield SQLDocumentStore(Session)
    engine.dispose()


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def dummy_extractor():
    return DummyExtractor

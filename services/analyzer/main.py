"""
Batch entry points for the analyzer: ingest every configured source, or
re-score the stored articles against the current profile.

Both runs route once per batch, process articles with a small bounded
worker pool, and check for cancellation only between articles.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from prometheus_client import Counter

from shared.app_logging.logger import get_logger
from shared.config.settings import (
    FeedSourceConfig,
    Settings,
    get_settings,
    require_model_credentials,
    require_topic,
)
from shared.database.profiles import load_profile
from shared.database.store import ARTICLES, DocumentStore, get_document_store
from shared.errors import ArticleProcessingError, ConfigurationInvalid, StorageWriteFailure
from shared.schemas.article import Article, article_id
from shared.schemas.feed import RawFeedItem

from services.analyzer.crud import list_articles, record_skip, replace_article, save_article
from services.analyzer.extractor import ContentExtractor
from services.analyzer.gateway import ModelGateway
from services.analyzer.pipeline import AnalysisPipeline
from services.analyzer.router import ScoringRoute, decide_route
from services.collector.parse import collect_source

logger = get_logger("analyzer.main")

ARTICLES_PROCESSED = Counter(
    "adjutant_articles_processed_total",
    "Articles processed by the pipeline, by outcome",
    ["outcome"],
)

Collector = Callable[[FeedSourceConfig], Awaitable[List[RawFeedItem]]]


class ItemOutcome(str, Enum):
    SAVED = "saved"
    TOPIC_FILTERED = "topic_filtered"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SourceReport:
    name: str
    fetched: int = 0
    new: int = 0
    duplicate: int = 0
    saved: int = 0
    topic_filtered: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    error: Optional[str] = None

    def count(self, outcome: ItemOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


@dataclass
class RunReport:
    route: ScoringRoute
    sources: List[SourceReport] = field(default_factory=list)
    cancelled: bool = False

    def _total(self, name: str) -> int:
        return sum(getattr(source, name) for source in self.sources)

    @property
    def saved(self) -> int:
        return self._total("saved") + self._total("topic_filtered")

    @property
    def new(self) -> int:
        return self._total("new")

    @property
    def failed(self) -> int:
        return self._total("failed")

    @property
    def skipped(self) -> int:
        return self._total("skipped")

    @property
    def status(self) -> str:
        """success, noop (nothing new) or failure (no source or no write succeeded)."""
        if self.sources and all(source.error for source in self.sources):
            return "failure"
        if self.new == 0:
            return "noop"
        if self.failed and not self.saved:
            return "failure"
        return "success"

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "route": self.route.value,
            "cancelled": self.cancelled,
            "new": self.new,
            "saved": self.saved,
            "skipped": self.skipped,
            "failed": self.failed,
            "sources": [asdict(source) for source in self.sources],
        }


@dataclass
class RerateReport:
    route: ScoringRoute
    total: int = 0
    rescored: int = 0
    topic_filtered: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False

    def as_dict(self) -> dict:
        data = asdict(self)
        data["route"] = self.route.value
        return data


class _Abort:
    """Run-wide abort flag set by a worker that hit a fatal error."""

    def __init__(self):
        self.error: Optional[Exception] = None

    def trip(self, error: Exception) -> None:
        if self.error is None:
            self.error = error


def _stopped(stop_event: Optional[asyncio.Event], abort: _Abort) -> bool:
    return abort.error is not None or (stop_event is not None and stop_event.is_set())


def _record_failure(store: DocumentStore, url: str, error: Exception) -> ItemOutcome:
    """Log an unexpected per-article error and record it as a skip."""
    stage = getattr(error, "stage", "unknown")
    logger.error(f"❌ Unexpected error on {url} at {stage}: {error}")
    try:
        record_skip(store, url, stage, f"unexpected error: {error}", [])
    except StorageWriteFailure as e:
        logger.error(f"❌ Could not record the failure for {url}: {e}")
    return ItemOutcome.FAILED


async def _process_item(
    item: RawFeedItem,
    pipeline: AnalysisPipeline,
    store: DocumentStore,
    route: ScoringRoute,
    profile,
    semaphore: asyncio.Semaphore,
    stop_event: Optional[asyncio.Event],
    abort: _Abort,
) -> ItemOutcome:
    async with semaphore:
        # Cancellation checkpoint: never mid-article
        if _stopped(stop_event, abort):
            return ItemOutcome.CANCELLED

        try:
            outcome = await pipeline.process(item, route, profile)
        except ConfigurationInvalid as e:
            abort.trip(e)
            return ItemOutcome.FAILED
        except Exception as e:
            return _record_failure(store, item.url, e)

        try:
            if outcome.skipped:
                record_skip(
                    store,
                    item.url,
                    outcome.stage.value,
                    outcome.reason,
                    outcome.issues,
                    outcome.retry_count,
                )
                return ItemOutcome.SKIPPED
            if not save_article(store, outcome.article):
                return ItemOutcome.DUPLICATE
        except StorageWriteFailure as e:
            logger.error(f"❌ Could not store {item.url}, a later run will retry it: {e}")
            return ItemOutcome.FAILED

        if outcome.article.topic_filtered:
            return ItemOutcome.TOPIC_FILTERED
        return ItemOutcome.SAVED


async def _run_source(
    source: FeedSourceConfig,
    collect: Collector,
    pipeline: AnalysisPipeline,
    store: DocumentStore,
    route: ScoringRoute,
    profile,
    semaphore: asyncio.Semaphore,
    stop_event: Optional[asyncio.Event],
    abort: _Abort,
) -> SourceReport:
    report = SourceReport(name=source.name)
    logger.info(f"📥 Collecting {source.name} ({source.url})")
    try:
        items = await collect(source)
    except Exception as e:
        logger.error(f"❌ Failed to collect {source.name}: {e}")
        report.error = str(e)
        return report

    report.fetched = len(items)
    batch = []
    seen = set()
    for item in items:
        if not item.url:
            logger.debug(f"Item without link from {source.name} skipped")
            report.skipped += 1
            continue
        doc_id = article_id(item.url)
        if doc_id in seen or store.exists(ARTICLES, doc_id):
            report.duplicate += 1
            continue
        seen.add(doc_id)
        batch.append(item)

    report.new = len(batch)
    tasks = [
        _process_item(item, pipeline, store, route, profile, semaphore, stop_event, abort)
        for item in batch
    ]
    for outcome in await asyncio.gather(*tasks):
        report.count(outcome)
        ARTICLES_PROCESSED.labels(outcome.value).inc()

    logger.info(
        f"✅ {source.name}: {report.new} new, {report.saved} saved, "
        f"{report.topic_filtered} topic-filtered, {report.skipped} skipped, {report.failed} failed"
    )
    return report


async def run_pipeline(
    store: Optional[DocumentStore] = None,
    gateway: Optional[ModelGateway] = None,
    extractor: Optional[ContentExtractor] = None,
    settings: Optional[Settings] = None,
    stop_event: Optional[asyncio.Event] = None,
    collect: Collector = collect_source,
) -> RunReport:
    """Run the pipeline over all configured sources.

    Raises ConfigurationInvalid or StorageUnavailable before any item is
    processed when the run cannot proceed at all.
    """
    settings = settings or get_settings()
    require_model_credentials(settings)
    require_topic(settings)

    store = store or get_document_store()
    store.ping()

    pipeline = AnalysisPipeline(
        gateway or ModelGateway(settings=settings),
        extractor or ContentExtractor(),
        settings,
    )
    profile = load_profile(store)
    report = RunReport(route=decide_route(profile))
    semaphore = asyncio.Semaphore(settings.pipeline.worker_concurrency)
    abort = _Abort()

    logger.info(f"🚀 Starting pipeline run over {len(settings.pipeline.feed_sources)} sources")
    for source in settings.pipeline.feed_sources:
        if _stopped(stop_event, abort):
            break
        report.sources.append(
            await _run_source(source, collect, pipeline, store, report.route, profile, semaphore, stop_event, abort)
        )

    if abort.error is not None:
        logger.error(f"❌ Pipeline run aborted: {abort.error}")
        raise abort.error

    report.cancelled = stop_event is not None and stop_event.is_set()
    logger.info(
        f"🏁 Pipeline run finished: {report.new} new, {report.saved} saved, "
        f"{report.skipped} skipped, {report.failed} failed"
    )
    return report


async def rerate_articles(
    store: Optional[DocumentStore] = None,
    gateway: Optional[ModelGateway] = None,
    settings: Optional[Settings] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> RerateReport:
    """Re-score every stored article that was not topic-filtered, using stored content.

    On the profile-aware route the topic filter runs again, so articles that
    no longer fit the topic are stored as topic-filtered.
    """
    settings = settings or get_settings()
    require_model_credentials(settings)

    store = store or get_document_store()
    store.ping()

    pipeline = AnalysisPipeline(
        gateway or ModelGateway(settings=settings),
        ContentExtractor(),
        settings,
    )
    profile = load_profile(store)
    articles = list_articles(store, topic_filtered=False)
    report = RerateReport(route=decide_route(profile), total=len(articles))
    semaphore = asyncio.Semaphore(settings.pipeline.worker_concurrency)
    abort = _Abort()

    async def rescore(article: Article) -> ItemOutcome:
        async with semaphore:
            if _stopped(stop_event, abort):
                return ItemOutcome.CANCELLED
            try:
                outcome = await pipeline.rescore(article, report.route, profile)
            except ConfigurationInvalid as e:
                abort.trip(e)
                return ItemOutcome.FAILED
            except Exception as e:
                return _record_failure(store, article.url, e)
            if outcome.skipped:
                return ItemOutcome.SKIPPED

            updated = outcome.article
            # Ratings may have changed while the model call was in flight
            current = store.get(ARTICLES, updated.id)
            if current:
                latest = Article.from_document(current)
                updated.relevance = latest.relevance
                updated.rated_at = latest.rated_at
            try:
                replace_article(store, updated)
            except StorageWriteFailure as e:
                logger.error(f"❌ Could not store re-scored {updated.url}: {e}")
                return ItemOutcome.FAILED
            if updated.topic_filtered:
                return ItemOutcome.TOPIC_FILTERED
            return ItemOutcome.SAVED

    logger.info(f"🔁 Re-scoring {len(articles)} articles via {report.route.value}")
    for outcome in await asyncio.gather(*(rescore(article) for article in articles)):
        if outcome == ItemOutcome.SAVED:
            report.rescored += 1
        elif outcome == ItemOutcome.TOPIC_FILTERED:
            report.topic_filtered += 1
        elif outcome == ItemOutcome.SKIPPED:
            report.skipped += 1
        elif outcome == ItemOutcome.FAILED:
            report.failed += 1
        elif outcome == ItemOutcome.CANCELLED:
            report.cancelled = True

    if abort.error is not None:
        raise abort.error

    logger.info(
        f"🏁 Re-rate finished: {report.rescored} re-scored, {report.topic_filtered} topic-filtered, "
        f"{report.skipped} skipped, {report.failed} failed"
    )
    return report

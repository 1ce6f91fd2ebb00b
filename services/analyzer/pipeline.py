"""
Per-article analysis state machine.

    Preprocess -> Extract -> TopicFilter -> {Skip | Score} -> QualityCheck -> {Retry -> Score | Done}

The pipeline only produces finalized Article records or skip outcomes;
persisting them is the caller's job. Partial or invalid model output never
leaves this module attached to an article.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError

from shared.app_logging.logger import CorrelationContext, get_logger
from shared.config.settings import Settings, get_settings
from shared.errors import (
    ArticleProcessingError,
    ConfigurationInvalid,
    MalformedModelOutput,
    ModelUnavailable,
)
from shared.schemas.analysis import AnalysisResult
from shared.schemas.article import (
    TOPIC_FILTERED_SUMMARY,
    Article,
    Category,
    ContentSource,
    ExtractionStatus,
    article_id,
    utcnow,
)
from shared.schemas.feed import RawFeedItem
from shared.schemas.profile import UserProfile
from shared.utils.retry import retry_with_feedback
from shared.utils.text import strip_html, truncate

from services.analyzer import prompts, quality
from services.analyzer.extractor import ContentExtractor
from services.analyzer.gateway import ModelGateway, ModelTier
from services.analyzer.parsing import extract_json, parse_yes_no
from services.analyzer.router import ScoringRoute

logger = get_logger("analyzer.pipeline")

# Used only to satisfy the validator on the topic-only route; never stored.
NEUTRAL_SCORE = 5
TOPIC_FILTER_ATTEMPTS = 2


class Stage(str, Enum):
    PREPROCESS = "preprocess"
    EXTRACT = "extract"
    TOPIC_FILTER = "topic_filter"
    SCORE = "score"
    QUALITY_CHECK = "quality_check"
    DONE = "done"


@dataclass
class PipelineState:
    """Transient working state for one in-flight article. Never persisted."""

    article: Article
    content: str = ""
    issues: List[str] = field(default_factory=list)
    retry_count: int = 0
    max_retries: int = 3
    should_skip: bool = False
    stage: Stage = Stage.PREPROCESS
    last_error: Optional[str] = None

    def skip(self, reason: str, issues: Optional[List[str]] = None) -> None:
        self.should_skip = True
        self.last_error = reason
        if issues:
            self.issues = list(issues)


@dataclass
class PipelineOutcome:
    article: Optional[Article]
    stage: Stage
    reason: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    retry_count: int = 0

    @property
    def skipped(self) -> bool:
        return self.article is None


def article_from_item(item: RawFeedItem) -> Article:
    excerpt = strip_html(item.excerpt)
    return Article(
        id=article_id(item.url),
        url=item.url,
        title=item.title or item.url,
        author=item.author or None,
        source_name=item.source,
        rss_excerpt=excerpt,
        content_length=len(excerpt),
        published_at=item.published_at,
    )


class AnalysisPipeline:
    def __init__(
        self,
        gateway: ModelGateway,
        extractor: ContentExtractor,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.extractor = extractor
        self.settings = settings or get_settings()

    @property
    def _pipeline(self):
        return self.settings.pipeline

    async def process(
        self,
        item: RawFeedItem,
        route: ScoringRoute,
        profile: Optional[UserProfile] = None,
    ) -> PipelineOutcome:
        """Run a new feed item through every stage."""
        state = self._preprocess(article_from_item(item))
        with CorrelationContext(state.article.id[:12]):
            logger.info(f"▶︎ Processing {state.article.url}")
            return await self._run(state, route, profile, extract=True, topic_filter=True)

    async def rescore(
        self,
        article: Article,
        route: ScoringRoute,
        profile: Optional[UserProfile] = None,
    ) -> PipelineOutcome:
        """Score a stored article again from its stored content, without re-extraction.

        The topic filter runs again on the profile-aware route, so an article
        that no longer fits the topic is filtered instead of re-scored.
        """
        state = self._preprocess(article.model_copy(deep=True))
        with CorrelationContext(state.article.id[:12]):
            logger.info(f"🔁 Re-scoring {state.article.url}")
            return await self._run(state, route, profile, extract=False, topic_filter=True)

    async def _run(
        self,
        state: PipelineState,
        route: ScoringRoute,
        profile: Optional[UserProfile],
        extract: bool,
        topic_filter: bool,
    ) -> PipelineOutcome:
        if route == ScoringRoute.PROFILE_AWARE and profile is None:
            raise ValueError("profile-aware route requires a profile")

        try:
            if extract:
                await self._extract(state)
            self._check_floor(state)

            if not state.should_skip and topic_filter and route == ScoringRoute.PROFILE_AWARE:
                await self._topic_filter(state)
                if state.article.topic_filtered:
                    return self._done(state)

            if not state.should_skip:
                await self._score(state, route, profile)
        except ModelUnavailable as e:
            state.skip(str(e))
        except ConfigurationInvalid:
            raise
        except Exception as e:
            raise ArticleProcessingError(state.article.url, state.stage.value, e) from e

        if state.should_skip:
            logger.warning(
                f"⏭️ Skipped {state.article.url} at {state.stage.value}: {state.last_error}"
                + (f" [{', '.join(state.issues)}]" if state.issues else "")
            )
            return PipelineOutcome(
                article=None,
                stage=state.stage,
                reason=state.last_error,
                issues=state.issues,
                retry_count=state.retry_count,
            )
        return self._done(state)

    def _preprocess(self, article: Article) -> PipelineState:
        article.rss_excerpt = strip_html(article.rss_excerpt)
        state = PipelineState(
            article=article,
            max_retries=self._pipeline.max_quality_retries,
        )
        state.content = self._select_content(article)
        return state

    def _select_content(self, article: Article) -> str:
        """Best available content: extracted text, then prior summary, then excerpt."""
        prior_summary = article.ai_summary
        if prior_summary == TOPIC_FILTERED_SUMMARY:
            prior_summary = None
        for candidate in (article.full_content_text, prior_summary, article.rss_excerpt):
            if candidate and candidate.strip():
                return truncate(candidate.strip(), self._pipeline.content_max_length)
        return ""

    def _check_floor(self, state: PipelineState) -> None:
        state.stage = Stage.PREPROCESS
        if len(state.content) < self._pipeline.min_content_length:
            state.skip(
                f"no content above {self._pipeline.min_content_length} characters "
                f"(best source has {len(state.content)})"
            )

    async def _extract(self, state: PipelineState) -> None:
        state.stage = Stage.EXTRACT
        article = state.article
        result = await self.extractor.extract(article.url)

        if result.ok:
            article.full_content_text = result.text
            article.content_source = ContentSource.EXTRACTED
            article.extraction_status = ExtractionStatus.SUCCESS
            article.content_length = result.length
            if not article.author and result.byline:
                article.author = result.byline
        else:
            article.content_source = (
                ContentSource.EXCERPT if article.rss_excerpt else ContentSource.FAILED
            )
            article.extraction_status = ExtractionStatus.FAILED
            article.extraction_error = result.error
            article.content_length = len(article.rss_excerpt)
            logger.info(f"Using feed excerpt for {article.url}: {result.error}")

        state.content = self._select_content(article)

    async def _topic_filter(self, state: PipelineState) -> None:
        state.stage = Stage.TOPIC_FILTER
        article = state.article
        snippet = state.content[: self._pipeline.topic_filter_chars]
        prompt = prompts.topic_filter_prompt(self._pipeline.topic_description, article.title, snippet)

        async def ask(current_prompt: str) -> bool:
            answer = await self.gateway.invoke(ModelTier.CHEAP, current_prompt)
            verdict = parse_yes_no(answer)
            if verdict is None:
                raise MalformedModelOutput("ambiguous topic answer", issues=[answer])
            return verdict

        outcome = await retry_with_feedback(
            ask,
            prompt,
            validate=lambda verdict: [],
            augment=lambda base, issues: prompts.topic_filter_retry_prompt(base, issues[0]),
            max_attempts=TOPIC_FILTER_ATTEMPTS,
            label="topic filter",
        )
        # Ambiguity after the retry fails closed
        relevant = bool(outcome.value)
        if not outcome.ok:
            logger.info(f"Topic filter stayed ambiguous, treating as not relevant: {article.url}")

        if not relevant:
            article.topic_filtered = True
            article.topic_filtered_at = utcnow()
            article.ai_score = None
            article.ai_summary = TOPIC_FILTERED_SUMMARY
            logger.info(f"🔕 Topic-filtered {article.url}")

    async def _score(
        self,
        state: PipelineState,
        route: ScoringRoute,
        profile: Optional[UserProfile],
    ) -> None:
        state.stage = Stage.SCORE
        article = state.article

        if route == ScoringRoute.PROFILE_AWARE:
            tier = ModelTier.EXPENSIVE
            prompt = prompts.profile_score_prompt(profile, article.title, state.content)
        else:
            tier = ModelTier.CHEAP
            prompt = prompts.summarize_prompt(article.title, state.content)

        async def generate(current_prompt: str) -> AnalysisResult:
            state.stage = Stage.SCORE
            data = extract_json(await self.gateway.invoke(tier, current_prompt))
            state.stage = Stage.QUALITY_CHECK
            score = data.get("score", data.get("ai_score"))
            try:
                return AnalysisResult(
                    score=NEUTRAL_SCORE if route == ScoringRoute.TOPIC_ONLY else score,
                    summary=str(data.get("summary") or data.get("ai_summary") or ""),
                    category=data.get("category"),
                    reasoning=data.get("reasoning"),
                )
            except ValidationError as e:
                raise MalformedModelOutput(
                    "fields have the wrong type",
                    issues=[
                        f"Field '{'.'.join(map(str, err['loc']))}' {err['msg'].lower()}"
                        for err in e.errors()
                    ],
                ) from e

        outcome = await retry_with_feedback(
            generate,
            prompt,
            validate=lambda result: quality.validate(result, prompt=prompt).issues,
            augment=prompts.with_issues,
            max_attempts=state.max_retries + 1,
            label=f"{route.value} scoring",
        )
        state.retry_count = outcome.attempts - 1
        state.stage = Stage.QUALITY_CHECK

        if not outcome.ok:
            state.skip(f"quality check failed after {outcome.attempts} attempts", outcome.issues)
            return

        result = outcome.value
        article.ai_summary = " ".join(result.summary.split())
        article.ai_category = Category(result.category)
        article.ai_score = result.score if route == ScoringRoute.PROFILE_AWARE else None

    def _done(self, state: PipelineState) -> PipelineOutcome:
        state.stage = Stage.DONE
        article = Article.model_validate(state.article.model_dump())
        logger.info(
            f"✅ Finished {article.url} (score={article.ai_score}, "
            f"topic_filtered={article.topic_filtered}, source={article.content_source.value})"
        )
        return PipelineOutcome(article=article, stage=Stage.DONE, retry_count=state.retry_count)

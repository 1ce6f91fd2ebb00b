import json

import httpx
import openai
import pytest

from services.analyzer.extractor import ExtractionResult
from services.analyzer.gateway import ModelGateway
from services.analyzer.pipeline import AnalysisPipeline, Stage
from services.analyzer.router import ScoringRoute, decide_route
from shared.errors import ArticleProcessingError
from shared.schemas.article import (
    TOPIC_FILTERED_SUMMARY,
    Article,
    Category,
    ContentSource,
    ExtractionStatus,
)
from shared.schemas.feed import RawFeedItem
from shared.schemas.profile import UserProfile

CHEAP = "gpt-4o-mini"
EXPENSIVE = "gpt-4o"

EXCERPT = (
    "<p>A hands-on look at serving quantized language models on a single consumer GPU, "
    "with benchmarks for three popular inference servers.</p>"
)
FULL_TEXT = (
    "Serving large models on small hardware is mostly a memory problem. "
    "This post measures vLLM, llama.cpp and TGI on a single 24GB card with 4-bit weights. " * 4
)
SUMMARY = (
    "The author benchmarks three inference servers running four-bit quantized models on one "
    "consumer graphics card and explains which memory settings matter most for latency, "
    "throughput and stability in small self-hosted deployments."
)


def reply(**fields):
    return json.dumps(fields)


def good_reply(score=8, category="Analysis"):
    return reply(score=score, summary=SUMMARY, category=category, reasoning="Matches the serving interest.")


def make_item(excerpt=EXCERPT, url="https://blog.example/serving-quantized-models"):
    return RawFeedItem(
        title="Serving quantized models on one GPU",
        url=url,
        excerpt=excerpt,
        source="Example Blog",
    )


@pytest.fixture
def profile(settings):
    return UserProfile.build(
        likes=["LLM inference optimization", "self-hosted model serving"],
        dislikes=["crypto trading bots", "celebrity tech gossip"],
        changelog="Initial profile",
    )


@pytest.fixture
def failed_extraction(dummy_extractor):
    return dummy_extractor(ExtractionResult.failed("timed out after 30s"))


@pytest.fixture
def good_extraction(dummy_extractor):
    return dummy_extractor(
        ExtractionResult(
            status=ExtractionStatus.SUCCESS,
            text=FULL_TEXT.strip(),
            byline="Jo Author",
            length=len(FULL_TEXT.strip()),
        )
    )


def build(settings, client, extractor):
    return AnalysisPipeline(ModelGateway(client=client, settings=settings), extractor, settings)


def test_route_is_chosen_from_profile_presence(profile):
    assert decide_route(None) == ScoringRoute.TOPIC_ONLY
    assert decide_route(profile) == ScoringRoute.PROFILE_AWARE


@pytest.mark.asyncio
async def test_extraction_timeout_falls_back_to_excerpt(settings, scripted_client, failed_extraction):
    client = scripted_client({CHEAP: [reply(summary=SUMMARY, category="Tutorial")]})
    pipeline = build(settings, client, failed_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.TOPIC_ONLY)

    article = outcome.article
    assert outcome.stage == Stage.DONE
    assert article.content_source == ContentSource.EXCERPT
    assert article.extraction_status == ExtractionStatus.FAILED
    assert article.extraction_error == "timed out after 30s"
    assert article.full_content_text is None
    assert article.rss_excerpt.startswith("A hands-on look")
    assert "<p>" not in article.rss_excerpt
    assert article.ai_category == Category.TUTORIAL
    # the topic-only route never stores a score
    assert article.ai_score is None
    assert "A hands-on look" in client.prompts_for(CHEAP)[0]


@pytest.mark.asyncio
async def test_extracted_text_is_used_for_scoring(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: [good_reply(score=9)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    article = outcome.article
    assert article.content_source == ContentSource.EXTRACTED
    assert article.extraction_status == ExtractionStatus.SUCCESS
    assert article.author == "Jo Author"
    assert article.ai_score == 9
    assert article.ai_category == Category.ANALYSIS
    assert not article.topic_filtered
    scoring_prompt = client.prompts_for(EXPENSIVE)[0]
    assert "Serving large models on small hardware" in scoring_prompt
    assert "self-hosted model serving" in scoring_prompt
    assert good_extraction.urls == ["https://blog.example/serving-quantized-models"]


@pytest.mark.asyncio
async def test_ambiguous_topic_answer_retried_once_then_filtered(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["Not sure, could be yes or no"]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    article = outcome.article
    assert article.topic_filtered
    assert article.topic_filtered_at is not None
    assert article.ai_score is None
    assert article.ai_summary == TOPIC_FILTERED_SUMMARY
    assert len(client.prompts_for(CHEAP)) == 2
    assert "ambiguous" in client.prompts_for(CHEAP)[1]
    assert client.prompts_for(EXPENSIVE) == []


@pytest.mark.asyncio
async def test_clear_no_is_filtered_without_expensive_call(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["No."]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.article.topic_filtered
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_ambiguous_then_yes_goes_on_to_scoring(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["hmm", "yes"], EXPENSIVE: [good_reply(score=4)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert not outcome.article.topic_filtered
    assert outcome.article.ai_score == 4


@pytest.mark.asyncio
async def test_quality_retries_are_bounded_and_end_in_skip(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: [good_reply(score=42)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.skipped
    assert outcome.stage == Stage.QUALITY_CHECK
    max_retries = settings.pipeline.max_quality_retries
    assert len(client.prompts_for(EXPENSIVE)) == max_retries + 1
    assert outcome.retry_count == max_retries
    assert any("outside the range" in issue for issue in outcome.issues)
    # every retry carries the previous issues
    for prompt in client.prompts_for(EXPENSIVE)[1:]:
        assert "Fix these problems" in prompt
        assert "outside the range" in prompt


@pytest.mark.asyncio
async def test_malformed_json_is_fed_back_and_recovered(settings, scripted_client, good_extraction, profile):
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: ["Sure! The score is 8.", good_reply(score=8)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.article.ai_score == 8
    assert outcome.retry_count == 1
    assert "single valid JSON object" in client.prompts_for(EXPENSIVE)[1]


@pytest.mark.asyncio
async def test_original_key_names_are_accepted(settings, scripted_client, good_extraction, profile):
    legacy = reply(ai_score=6, ai_summary=SUMMARY, category="Research")
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: [legacy]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.article.ai_score == 6
    assert outcome.article.ai_category == Category.RESEARCH


@pytest.mark.asyncio
async def test_unavailable_model_skips_the_article(settings, scripted_client, good_extraction, profile):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client = scripted_client({CHEAP: [openai.APIConnectionError(request=request)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.skipped
    assert outcome.stage == Stage.TOPIC_FILTER
    assert "cheap" in outcome.reason


@pytest.mark.asyncio
async def test_no_usable_content_is_skipped_before_any_model_call(settings, scripted_client, failed_extraction):
    client = scripted_client({})
    pipeline = build(settings, client, failed_extraction)

    outcome = await pipeline.process(make_item(excerpt="Short."), ScoringRoute.TOPIC_ONLY)

    assert outcome.skipped
    assert outcome.stage == Stage.PREPROCESS
    assert client.calls == []


@pytest.mark.asyncio
async def test_rescore_uses_stored_content_without_extraction(settings, scripted_client, dummy_extractor, profile):
    extractor = dummy_extractor(ExtractionResult.failed("should not be called"))
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: [good_reply(score=3, category="Opinion")]})
    pipeline = build(settings, client, extractor)
    stored = Article(
        id="a" * 64,
        url="https://blog.example/old",
        title="Old post",
        source_name="Example Blog",
        rss_excerpt="excerpt",
        full_content_text=FULL_TEXT.strip(),
        content_source=ContentSource.EXTRACTED,
        extraction_status=ExtractionStatus.SUCCESS,
        content_length=len(FULL_TEXT.strip()),
        ai_summary=SUMMARY,
        ai_category=Category.ANALYSIS,
    )

    outcome = await pipeline.rescore(stored, ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.article.ai_score == 3
    assert outcome.article.ai_category == Category.OPINION
    assert extractor.urls == []
    # the topic filter is asked again on re-score
    assert len(client.prompts_for(CHEAP)) == 1
    # the input article is left untouched
    assert stored.ai_score is None


@pytest.mark.asyncio
async def test_profile_route_needs_a_profile(settings, scripted_client, good_extraction):
    pipeline = build(settings, scripted_client({}), good_extraction)
    with pytest.raises(ValueError):
        await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, None)


@pytest.mark.asyncio
async def test_wrong_typed_field_is_fed_back_and_recovered(settings, scripted_client, good_extraction, profile):
    wrong = reply(score=8, summary=SUMMARY, category="Analysis", reasoning=["fits", "likes"])
    client = scripted_client({CHEAP: ["yes"], EXPENSIVE: [wrong, good_reply(score=8)]})
    pipeline = build(settings, client, good_extraction)

    outcome = await pipeline.process(make_item(), ScoringRoute.PROFILE_AWARE, profile)

    assert outcome.article.ai_score == 8
    assert outcome.retry_count == 1
    assert "Field 'reasoning'" in client.prompts_for(EXPENSIVE)[1]


class BrokenExtractor:
    async def extract(self, url):
        raise RuntimeError("parser exploded")


@pytest.mark.asyncio
async def test_unexpected_error_carries_url_and_stage(settings, scripted_client):
    pipeline = build(settings, scripted_client({}), BrokenExtractor())

    with pytest.raises(ArticleProcessingError) as excinfo:
        await pipeline.process(make_item(), ScoringRoute.TOPIC_ONLY)

    assert excinfo.value.url == "https://blog.example/serving-quantized-models"
    assert excinfo.value.stage == "extract"
    assert "parser exploded" in str(excinfo.value)

"""
Call boundary to the two model tiers.

The cheap tier handles binary filtering and short summaries; the expensive
tier handles nuanced scoring and profile synthesis. Transient failures and
empty responses are retried with exponential backoff; exhausting the retries
raises ModelUnavailable.
"""

import asyncio
from enum import Enum
from typing import Optional

import openai
from openai import AsyncOpenAI
from prometheus_client import Counter

from shared.app_logging.logger import get_logger
from shared.config.settings import Settings, get_settings
from shared.errors import ConfigurationInvalid, ModelUnavailable, TransientIO
from shared.utils.retry import RetryConfig, RetryError, async_retry_with_backoff

logger = get_logger("analyzer.gateway")

MODEL_CALLS = Counter(
    "adjutant_model_calls_total",
    "Model gateway calls by tier and outcome",
    ["tier", "outcome"],
)


class ModelTier(str, Enum):
    CHEAP = "cheap"
    EXPENSIVE = "expensive"


# Retries after the first call
TIER_RETRIES = {
    ModelTier.CHEAP: 2,
    ModelTier.EXPENSIVE: 3,
}


class EmptyModelResponse(TransientIO):
    pass


RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    asyncio.TimeoutError,
    EmptyModelResponse,
)


class ModelGateway:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        settings: Optional[Settings] = None,
        base_delay: Optional[float] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        # Our own backoff governs retries, so the SDK's are disabled
        self.client = client or AsyncOpenAI(
            api_key=settings.openai.api_key,
            timeout=settings.openai.timeout,
            max_retries=0,
        )
        self.models = {
            ModelTier.CHEAP: settings.openai.filter_model,
            ModelTier.EXPENSIVE: settings.openai.score_model,
        }
        self.base_delay = base_delay if base_delay is not None else settings.pipeline.retry_delay

    def _retry_config(self, tier: ModelTier) -> RetryConfig:
        return RetryConfig(
            max_retries=TIER_RETRIES[tier],
            base_delay=self.base_delay,
            max_delay=self.base_delay * 10,
            backoff_factor=self.settings.pipeline.retry_backoff_factor,
            retryable_exceptions=RETRYABLE_ERRORS,
        )

    async def _complete(self, tier: ModelTier, prompt: str) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.models[tier],
                messages=[{"role": "user", "content": prompt}],
                temperature=self.settings.openai.temperature,
                max_tokens=self.settings.openai.max_tokens,
            ),
            timeout=self.settings.openai.timeout,
        )
        content = response.choices[0].message.content if response.choices else None
        content = (content or "").strip()
        if not content:
            raise EmptyModelResponse(f"{tier.value} model returned an empty response")
        return content

    async def invoke(self, tier: ModelTier, prompt: str) -> str:
        """Send one prompt to the selected tier and return the response text."""
        tier = ModelTier(tier)
        try:
            text = await async_retry_with_backoff(
                self._complete, tier, prompt, config=self._retry_config(tier)
            )
        except RetryError as e:
            MODEL_CALLS.labels(tier.value, "unavailable").inc()
            cause = e.__cause__ or e
            logger.error(f"❌ {tier.value} model unavailable: {cause}")
            raise ModelUnavailable(tier.value, str(cause)) from e
        except openai.AuthenticationError as e:
            MODEL_CALLS.labels(tier.value, "auth_error").inc()
            raise ConfigurationInvalid(f"Model credentials rejected: {e}") from e
        except openai.APIError as e:
            MODEL_CALLS.labels(tier.value, "error").inc()
            logger.error(f"❌ {tier.value} model call rejected: {e}")
            raise ModelUnavailable(tier.value, str(e)) from e

        MODEL_CALLS.labels(tier.value, "success").inc()
        return text

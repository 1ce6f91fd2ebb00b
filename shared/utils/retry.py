"""
Retry utilities with exponential backoff for Adjutant services.
Provides backoff retries for transient failures and a feedback-driven
retry loop for model output that fails validation.
"""

import asyncio
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, List, Optional, Tuple, Type, TypeVar

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.errors import MalformedModelOutput

logger = get_logger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for retry attempt with exponential backoff and jitter."""
    delay = config.base_delay * (config.backoff_factor ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add random jitter to prevent thundering herd
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


async def async_retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    config: RetryConfig,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs
) -> T:
    """
    Await a coroutine function with retry logic and exponential backoff.

    Args:
        func: Coroutine function to execute
        *args: Arguments to pass to function
        config: Retry behavior; ``max_retries`` counts retries after the first call
        on_retry: Callback function called on each retry attempt
        **kwargs: Keyword arguments to pass to function

    Returns:
        Function result

    Raises:
        RetryError: If all retry attempts are exhausted
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt == config.max_retries:
                logger.error(f"Async function {name} failed after {config.max_retries} retries: {e}")
                raise RetryError(f"Async function {name} failed after {config.max_retries} retries: {e}") from e

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"Async function {name} failed (attempt {attempt + 1}/{config.max_retries + 1}): {e}. "
                f"Retrying in {delay:.2f}s"
            )

            if on_retry:
                on_retry(e, attempt + 1)

            await asyncio.sleep(delay)

    raise RetryError(f"Async function {name} made no attempts")


def async_retry(
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    backoff_factor: Optional[float] = None,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None
):
    """
    Decorator for retrying async function calls with exponential backoff.

    Unset parameters fall back to the pipeline retry settings.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            settings = get_settings()
            config = RetryConfig(
                max_retries=max_retries if max_retries is not None else 2,
                base_delay=base_delay if base_delay is not None else settings.pipeline.retry_delay,
                max_delay=max_delay or settings.pipeline.retry_delay * 10,
                backoff_factor=backoff_factor or settings.pipeline.retry_backoff_factor,
                jitter=jitter,
                retryable_exceptions=retryable_exceptions
            )
            return await async_retry_with_backoff(func, *args, config=config, on_retry=on_retry, **kwargs)

        return wrapper
    return decorator


@dataclass
class FeedbackOutcome(Generic[T]):
    """Result of a retry-with-feedback loop."""

    value: Optional[T]
    attempts: int
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None


async def retry_with_feedback(
    generate: Callable[[str], Awaitable[T]],
    prompt: str,
    validate: Callable[[T], List[str]],
    augment: Callable[[str, List[str]], str],
    max_attempts: int,
    label: str = "generation",
) -> FeedbackOutcome[T]:
    """
    Run attempt -> validate -> (retry with augmented prompt | give up).

    ``generate`` turns a prompt into a candidate and may raise
    MalformedModelOutput when the raw output cannot be parsed; those issues
    are fed back exactly like validator issues. Any other exception
    propagates to the caller. The loop makes at most ``max_attempts`` calls.
    """
    issues: List[str] = []
    current_prompt = prompt

    for attempt in range(1, max_attempts + 1):
        try:
            candidate = await generate(current_prompt)
        except MalformedModelOutput as e:
            issues = e.issues or [str(e)]
        else:
            issues = validate(candidate)
            if not issues:
                if attempt > 1:
                    logger.info(f"{label} passed validation on attempt {attempt}/{max_attempts}")
                return FeedbackOutcome(value=candidate, attempts=attempt)

        logger.warning(f"{label} attempt {attempt}/{max_attempts} failed validation: {', '.join(issues)}")
        current_prompt = augment(prompt, issues)

    logger.error(f"{label} gave up after {max_attempts} attempts: {', '.join(issues)}")
    return FeedbackOutcome(value=None, attempts=max_attempts, issues=issues)

import asyncio

import fakeredis
import pytest

from shared.errors import MalformedModelOutput
from shared.utils.retry import (
    RetryConfig,
    RetryError,
    async_retry_with_backoff,
    calculate_delay,
    retry_with_feedback,
)
from shared.utils.run_guard import RunGuard, RunInProgress


def test_calculate_delay_is_exponential_and_capped():
    config = RetryConfig(base_delay=1.0, backoff_factor=2.0, max_delay=5.0, jitter=False)
    assert [calculate_delay(i, config) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_backoff_retries_until_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("boom")
        return "ok"

    config = RetryConfig(max_retries=2, base_delay=0, jitter=False)
    assert await async_retry_with_backoff(flaky, config=config) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_backoff_gives_up_with_retry_error():
    calls = []

    async def broken():
        calls.append(1)
        raise ConnectionError("down")

    config = RetryConfig(max_retries=2, base_delay=0, jitter=False)
    with pytest.raises(RetryError):
        await async_retry_with_backoff(broken, config=config)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_backoff_does_not_retry_other_errors():
    calls = []

    async def wrong():
        calls.append(1)
        raise KeyError("nope")

    config = RetryConfig(max_retries=3, base_delay=0, retryable_exceptions=(ConnectionError,))
    with pytest.raises(KeyError):
        await async_retry_with_backoff(wrong, config=config)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_feedback_loop_feeds_issues_into_next_prompt():
    prompts = []

    async def generate(prompt):
        prompts.append(prompt)
        return len(prompts)

    outcome = await retry_with_feedback(
        generate,
        "base",
        validate=lambda value: [] if value == 2 else ["value must be 2"],
        augment=lambda prompt, issues: f"{prompt} | fix: {', '.join(issues)}",
        max_attempts=3,
    )

    assert outcome.ok
    assert outcome.value == 2
    assert outcome.attempts == 2
    assert prompts == ["base", "base | fix: value must be 2"]


@pytest.mark.asyncio
async def test_feedback_loop_terminates_after_max_attempts():
    calls = []

    async def generate(prompt):
        calls.append(prompt)
        raise MalformedModelOutput("bad json", issues=["Response must be JSON"])

    outcome = await retry_with_feedback(
        generate,
        "base",
        validate=lambda value: [],
        augment=lambda prompt, issues: prompt,
        max_attempts=4,
    )

    assert not outcome.ok
    assert len(calls) == 4
    assert outcome.issues == ["Response must be JSON"]


@pytest.mark.asyncio
async def test_local_guard_is_single_flight():
    guard = RunGuard("test-local")
    async with guard.hold():
        with pytest.raises(RunInProgress):
            async with RunGuard("test-local").hold():
                pass
    async with guard.hold():
        pass


@pytest.mark.asyncio
async def test_redis_guard_is_single_flight():
    client = fakeredis.FakeRedis()
    first = RunGuard("test-redis", ttl=10, redis_client=client)
    second = RunGuard("test-redis", ttl=10, redis_client=client)

    async with first.hold():
        with pytest.raises(RunInProgress):
            async with second.hold():
                pass
    assert not client.exists(first.key)

    async with second.hold():
        pass


@pytest.mark.asyncio
async def test_redis_guard_leaves_the_event_loop_free():
    client = fakeredis.FakeRedis()
    ticks = []
    seen_on_entry = []

    async def ticker():
        for _ in range(3):
            ticks.append(1)
            await asyncio.sleep(0)

    async def hold():
        async with RunGuard("test-loop", ttl=10, redis_client=client).hold():
            seen_on_entry.append(len(ticks))
            assert client.exists("adjutant:lock:test-loop")

    await asyncio.gather(hold(), ticker())

    # the ticker ran while the lock was being acquired
    assert seen_on_entry[0] >= 1
    assert len(ticks) == 3
    assert not client.exists("adjutant:lock:test-loop")

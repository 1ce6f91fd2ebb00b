"""
Single-flight guard for operations that must never overlap, such as
rewriting the singleton profile document.

Uses a Redis lock when a client is supplied so that separate processes are
serialized, otherwise a process-local flag.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

import redis

from shared.app_logging.logger import get_logger

logger = get_logger(__name__)

_held_locally: Set[str] = set()


class RunInProgress(Exception):
    """Another invocation already holds the guard."""


class RunGuard:
    def __init__(self, name: str, ttl: float = 300.0, redis_client: Optional[redis.Redis] = None):
        self.name = name
        self.ttl = ttl
        self.redis_client = redis_client

    @property
    def key(self) -> str:
        return f"adjutant:lock:{self.name}"

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold the guard for the duration of the block or raise RunInProgress."""
        if self.redis_client is not None:
            lock = self.redis_client.lock(self.key, timeout=self.ttl, blocking=False, thread_local=False)
            # redis-py calls block, keep them off the event loop; the token must
            # survive the hop between worker threads
            if not await asyncio.to_thread(lock.acquire, blocking=False):
                logger.warning(f"⏳ {self.name} already running in another process")
                raise RunInProgress(self.name)
            try:
                yield
            finally:
                try:
                    await asyncio.to_thread(lock.release)
                except redis.exceptions.LockError as e:
                    logger.warning(f"Lock {self.key} expired before release: {e}")
            return

        if self.name in _held_locally:
            logger.warning(f"⏳ {self.name} already running")
            raise RunInProgress(self.name)
        _held_locally.add(self.name)
        try:
            yield
        finally:
            _held_locally.discard(self.name)

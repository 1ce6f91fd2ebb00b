"""
Redis client utilities for Adjutant services.
Redis is optional: when REDIS_URL is unset, callers fall back to process-local state.
"""

from typing import Dict, Optional

import redis

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings

logger = get_logger(__name__)

# Global Redis client instances for each service
_redis_clients: Dict[str, redis.Redis] = {}


def get_redis_client(service_name: str) -> Optional[redis.Redis]:
    """Get or create a Redis client for a service, or None when Redis is not configured."""
    settings = get_settings()
    if not settings.redis.redis_url:
        return None

    if service_name not in _redis_clients:
        _redis_clients[service_name] = redis.from_url(
            settings.redis.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis.redis_timeout,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info(f"Created Redis client for {service_name}")
    return _redis_clients[service_name]


def close_all_redis_clients():
    """Close all Redis client connections."""
    for client in _redis_clients.values():
        client.close()
    _redis_clients.clear()

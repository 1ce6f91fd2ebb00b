"""
Health check utilities for Adjutant services.
Provides dependency monitoring and status reporting.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.utils.redis_client import get_redis_client

logger = get_logger(__name__)

CRITICAL_CHECKS = ["database", "openai"]


class HealthStatus(Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


@dataclass
class HealthCheck:
    """Individual health check result."""

    name: str
    status: HealthStatus
    message: str
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000


class HealthChecker:
    """Dependency health checker for a service."""

    def __init__(self, service_name: str, store_factory: Optional[Callable] = None):
        self.service_name = service_name
        self.logger = get_logger(f"{service_name}.health")
        self.checks: List[Callable[[], HealthCheck]] = []
        self.settings = get_settings()
        self._store_factory = store_factory

    def add_check(self, check_func: Callable[[], HealthCheck]):
        """Add a health check function."""
        self.checks.append(check_func)

    def check_database(self) -> HealthCheck:
        """Check document store connectivity."""
        start_time = time.perf_counter()
        try:
            if self._store_factory is None:
                from shared.database.store import get_document_store

                store = get_document_store()
            else:
                store = self._store_factory()
            store.ping()
            return HealthCheck(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Database connection successful",
                response_time_ms=_elapsed_ms(start_time),
            )
        except Exception as e:
            return HealthCheck(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message=f"Database connection failed: {str(e)}",
                response_time_ms=_elapsed_ms(start_time),
            )

    def check_redis(self) -> HealthCheck:
        """Check Redis connectivity. Redis is optional, so absence only degrades."""
        start_time = time.perf_counter()
        redis_client = get_redis_client(self.service_name)
        if redis_client is None:
            return HealthCheck(
                name="redis",
                status=HealthStatus.DEGRADED,
                message="Redis not configured; learner lock is process-local",
            )
        try:
            redis_client.ping()
            return HealthCheck(
                name="redis",
                status=HealthStatus.HEALTHY,
                message="Redis connection successful",
                response_time_ms=_elapsed_ms(start_time),
            )
        except Exception as e:
            return HealthCheck(
                name="redis",
                status=HealthStatus.UNHEALTHY,
                message=f"Redis connection failed: {str(e)}",
                response_time_ms=_elapsed_ms(start_time),
            )

    def check_openai(self) -> HealthCheck:
        """Check that model credentials and the topic description are configured."""
        missing = []
        if not self.settings.openai.api_key.strip():
            missing.append("OPENAI_API_KEY")
        if not self.settings.pipeline.topic_description.strip():
            missing.append("TOPIC_DESCRIPTION")
        if missing:
            return HealthCheck(
                name="openai",
                status=HealthStatus.UNHEALTHY,
                message=f"Missing configuration: {', '.join(missing)}",
            )
        return HealthCheck(
            name="openai",
            status=HealthStatus.HEALTHY,
            message="Model gateway configured",
            details={
                "filter_model": self.settings.openai.filter_model,
                "score_model": self.settings.openai.score_model,
            },
        )

    def run_all_checks(self) -> Dict[str, Any]:
        """Run all registered health checks."""
        results = []
        overall_status = HealthStatus.HEALTHY

        for check_func in self.checks:
            try:
                result = check_func()
            except Exception as e:
                result = HealthCheck(
                    name=getattr(check_func, "__name__", "check"),
                    status=HealthStatus.UNHEALTHY,
                    message=f"Health check failed with exception: {str(e)}",
                )
            results.append(result)

            if result.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY
            elif result.status == HealthStatus.DEGRADED and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "service": self.service_name,
            "status": overall_status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": [
                {
                    "name": check.name,
                    "status": check.status.value,
                    "message": check.message,
                    "response_time_ms": check.response_time_ms,
                    "details": check.details,
                    "timestamp": check.timestamp.isoformat(),
                }
                for check in results
            ],
        }

    def readiness(self) -> Dict[str, Any]:
        """Readiness is decided by the critical dependencies only."""
        health_data = self.run_all_checks()
        critical_checks = [
            check for check in health_data["checks"] if check["name"] in CRITICAL_CHECKS
        ]
        all_critical_healthy = all(check["status"] == "healthy" for check in critical_checks)
        return {
            "status": "ready" if all_critical_healthy else "not_ready",
            "service": self.service_name,
            "critical_dependencies": {check["name"]: check["status"] for check in critical_checks},
            "timestamp": health_data["timestamp"],
        }


def create_health_checker(service_name: str, store_factory: Optional[Callable] = None) -> HealthChecker:
    """Create a health checker with the store, Redis and model gateway checks."""
    checker = HealthChecker(service_name, store_factory=store_factory)
    checker.add_check(checker.check_database)
    checker.add_check(checker.check_redis)
    checker.add_check(checker.check_openai)
    return checker

"""
Per-batch choice between the two scoring routes.

This is the main cost-control lever. Relative to one expensive call per
article, the topic-only route costs about 27% of the profile-aware route,
and the profile-aware route costs about 33-40% of the naive approach,
because the cheap topic filter drops most irrelevant articles before any
expensive call is made.
"""

from enum import Enum
from typing import Optional

from shared.app_logging.logger import get_logger
from shared.schemas.profile import UserProfile

logger = get_logger("analyzer.router")


class ScoringRoute(str, Enum):
    TOPIC_ONLY = "topic_only"
    PROFILE_AWARE = "profile_aware"


def decide_route(profile: Optional[UserProfile]) -> ScoringRoute:
    """Evaluated once per batch, never per article."""
    route = ScoringRoute.PROFILE_AWARE if profile is not None else ScoringRoute.TOPIC_ONLY
    logger.info(f"🧭 Scoring route for this batch: {route.value}")
    return route

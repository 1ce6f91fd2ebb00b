"""
Profile learner: turns explicit relevance ratings into a preference profile.

    CollectRatings -> ValidateThreshold -> {Abort | LoadExisting} -> Generate -> Save

Runs are single-flight. The stored profile is only ever replaced by one
whole-document write of a fully validated profile.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from shared.app_logging.logger import CorrelationContext, get_logger
from shared.config.settings import Settings, get_settings
from shared.database.profiles import load_profile, save_profile
from shared.database.store import ARTICLES, PROFILE_ID, PROFILES, DocumentStore
from shared.errors import MalformedModelOutput, ModelUnavailable, StorageWriteFailure
from shared.schemas.article import Article, Relevance
from shared.schemas.profile import (
    MANUAL_UPDATE_CHANGELOG,
    RatingThreshold,
    UserProfile,
    validate_preferences,
)
from shared.utils.redis_client import get_redis_client
from shared.utils.retry import retry_with_feedback
from shared.utils.run_guard import RunGuard, RunInProgress

from services.analyzer.gateway import ModelGateway, ModelTier
from services.analyzer.parsing import extract_json
from services.analyzer.prompts import with_issues
from services.learner import prompts

logger = get_logger("learner.learner")


class LearnerStatus(str, Enum):
    SAVED = "saved"
    INSUFFICIENT_DATA = "insufficient_data"
    FAILED = "failed"
    BUSY = "busy"


@dataclass
class LearnerResult:
    status: LearnerStatus
    message: str
    profile: Optional[UserProfile] = None
    threshold: Optional[RatingThreshold] = None
    issues: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "profile": self.profile.to_document() if self.profile else None,
            "threshold": self.threshold.as_dict() if self.threshold else None,
            "issues": self.issues,
        }


@dataclass
class GeneratedProfile:
    likes: list
    dislikes: list
    changelog: str


def profile_guard(settings: Optional[Settings] = None) -> RunGuard:
    settings = settings or get_settings()
    return RunGuard(
        "profile",
        ttl=settings.profile.lock_timeout,
        redis_client=get_redis_client("learner"),
    )


def _parse_generated(data: dict) -> GeneratedProfile:
    likes = data.get("likes")
    dislikes = data.get("dislikes")
    issues = []
    if not isinstance(likes, list):
        issues.append("likes must be a JSON array of strings")
    if not isinstance(dislikes, list):
        issues.append("dislikes must be a JSON array of strings")
    if issues:
        raise MalformedModelOutput("profile lists missing", issues=issues)
    return GeneratedProfile(
        likes=[item.strip() if isinstance(item, str) else item for item in likes],
        dislikes=[item.strip() if isinstance(item, str) else item for item in dislikes],
        changelog=str(data.get("changelog") or "").strip(),
    )


def validate_generated(candidate: GeneratedProfile) -> List[str]:
    issues = validate_preferences(candidate.likes, candidate.dislikes)
    if not candidate.likes:
        issues.append("likes must contain at least one entry")
    if not candidate.dislikes:
        issues.append("dislikes must contain at least one entry")
    if not candidate.changelog:
        issues.append("changelog must be a non-empty sentence")
    return issues


class ProfileLearner:
    def __init__(
        self,
        store: DocumentStore,
        gateway: ModelGateway,
        settings: Optional[Settings] = None,
        guard: Optional[RunGuard] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.guard = guard or profile_guard(self.settings)

    async def run(self) -> LearnerResult:
        try:
            async with self.guard.hold():
                with CorrelationContext("profile-learner"):
                    return await self._run()
        except RunInProgress:
            return LearnerResult(
                status=LearnerStatus.BUSY,
                message="A profile update is already in progress",
            )

    def collect_ratings(self) -> List[Article]:
        rated = []
        for relevance in (Relevance.RELEVANT, Relevance.NOT_RELEVANT):
            rated.extend(
                Article.from_document(doc)
                for doc in self.store.query(ARTICLES, relevance=relevance.value)
            )
        return rated

    async def _run(self) -> LearnerResult:
        rated = self.collect_ratings()
        threshold = RatingThreshold(
            relevant_count=sum(1 for a in rated if a.relevance == Relevance.RELEVANT),
            not_relevant_count=sum(1 for a in rated if a.relevance == Relevance.NOT_RELEVANT),
            min_relevant=self.settings.profile.min_relevant_ratings,
            min_not_relevant=self.settings.profile.min_not_relevant_ratings,
        )
        if not threshold.met:
            logger.info(f"📉 Not enough ratings for a profile: {threshold.message}")
            return LearnerResult(
                status=LearnerStatus.INSUFFICIENT_DATA,
                message=threshold.message,
                threshold=threshold,
            )

        existing = load_profile(self.store)
        logger.info(
            f"🧠 Generating profile from {threshold.relevant_count} relevant and "
            f"{threshold.not_relevant_count} not relevant ratings "
            f"({'evolving existing profile' if existing else 'first profile'})"
        )

        prompt = prompts.profile_prompt(
            rated,
            existing,
            max_items=self.settings.profile.max_items,
            min_length=self.settings.profile.min_item_length,
        )

        async def generate(current_prompt: str) -> GeneratedProfile:
            response = await self.gateway.invoke(ModelTier.EXPENSIVE, current_prompt)
            return _parse_generated(extract_json(response))

        try:
            outcome = await retry_with_feedback(
                generate,
                prompt,
                validate=validate_generated,
                augment=with_issues,
                max_attempts=self.settings.profile.max_attempts,
                label="profile generation",
            )
        except ModelUnavailable as e:
            return LearnerResult(
                status=LearnerStatus.FAILED,
                message=str(e),
                threshold=threshold,
            )

        if not outcome.ok:
            return LearnerResult(
                status=LearnerStatus.FAILED,
                message=f"Profile generation failed validation after {outcome.attempts} attempts",
                threshold=threshold,
                issues=outcome.issues,
            )

        generated = outcome.value
        profile = UserProfile.build(
            generated.likes,
            generated.dislikes,
            generated.changelog,
            created_at=existing.created_at if existing else None,
        )
        try:
            save_profile(self.store, profile)
        except StorageWriteFailure as e:
            logger.error(f"❌ Failed to save profile, previous profile left in place: {e}")
            return LearnerResult(status=LearnerStatus.FAILED, message=str(e), threshold=threshold)

        logger.info(f"✅ Profile saved: {len(profile.likes)} likes, {len(profile.dislikes)} dislikes")
        return LearnerResult(
            status=LearnerStatus.SAVED,
            message=profile.changelog,
            profile=profile,
            threshold=threshold,
        )


async def update_profile_manual(
    store: DocumentStore,
    likes: List[str],
    dislikes: List[str],
    guard: Optional[RunGuard] = None,
) -> UserProfile:
    """Overwrite the profile with user-supplied lists. No model call.

    Raises ProfileValidationError without touching the stored profile when
    any entry breaks the per-item rules, and RunInProgress while a learner
    run holds the profile.
    """
    guard = guard or profile_guard()
    async with guard.hold():
        existing = load_profile(store)
        profile = UserProfile.build(
            likes,
            dislikes,
            MANUAL_UPDATE_CHANGELOG,
            created_at=existing.created_at if existing else None,
        )
        save_profile(store, profile)
    logger.info(f"✏️ Profile manually updated: {len(profile.likes)} likes, {len(profile.dislikes)} dislikes")
    return profile


def get_profile(store: DocumentStore) -> Optional[UserProfile]:
    return load_profile(store)


def delete_profile(store: DocumentStore) -> bool:
    deleted = store.delete(PROFILES, PROFILE_ID)
    if deleted:
        logger.info("🗑️ Profile deleted; future runs use the topic-only route")
    return deleted

from typing import Optional

from pydantic import ValidationError

from shared.app_logging.logger import get_logger
from shared.schemas.profile import UserProfile, validate_preferences

from .store import PROFILE_ID, PROFILES, DocumentStore

logger = get_logger("database.profiles")


def load_profile(store: DocumentStore) -> Optional[UserProfile]:
    """Return the stored profile, or None when it is absent or not wholly valid."""
    doc = store.get(PROFILES, PROFILE_ID)
    if doc is None:
        return None
    try:
        profile = UserProfile.model_validate(doc)
    except ValidationError as e:
        logger.warning(f"⚠️ Stored profile is malformed, ignoring it: {e}")
        return None
    issues = validate_preferences(profile.likes, profile.dislikes)
    if issues:
        logger.warning(f"⚠️ Stored profile violates item rules, ignoring it: {', '.join(issues)}")
        return None
    return profile


def save_profile(store: DocumentStore, profile: UserProfile) -> None:
    """Overwrite the singleton profile document in one write."""
    store.put(PROFILES, PROFILE_ID, profile.to_document())

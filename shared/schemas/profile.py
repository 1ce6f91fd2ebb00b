from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from shared.config.settings import get_settings
from shared.errors import ProfileValidationError
from shared.schemas.article import utcnow

MANUAL_UPDATE_CHANGELOG = "Profile manually updated by user"


def validate_preferences(likes: List[str], dislikes: List[str]) -> List[str]:
    """Return every per-item violation in a likes/dislikes pair; empty means valid."""
    settings = get_settings().profile
    issues = []
    for label, items in (("likes", likes), ("dislikes", dislikes)):
        if not isinstance(items, list):
            issues.append(f"{label} must be a list")
            continue
        if len(items) > settings.max_items:
            issues.append(f"{label} has {len(items)} entries, maximum is {settings.max_items}")
        for index, item in enumerate(items):
            if not isinstance(item, str):
                issues.append(f"{label}[{index}] must be a string")
            elif len(item.strip()) < settings.min_item_length:
                issues.append(
                    f"{label}[{index}] '{item.strip()}' is shorter than "
                    f"{settings.min_item_length} characters"
                )
    return issues


class UserProfile(BaseModel):
    """The singleton preference profile. Either wholly valid or absent."""

    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    changelog: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("likes", "dislikes", mode="before")
    @classmethod
    def strip_items(cls, v):
        if isinstance(v, list):
            return [item.strip() if isinstance(item, str) else item for item in v]
        return v

    @classmethod
    def build(
        cls,
        likes: List[str],
        dislikes: List[str],
        changelog: str,
        created_at: Optional[datetime] = None,
    ) -> "UserProfile":
        """Validate a likes/dislikes pair and build a profile, raising on any violation."""
        issues = validate_preferences(likes, dislikes)
        if issues:
            raise ProfileValidationError(issues)
        now = utcnow()
        return cls(
            likes=likes,
            dislikes=dislikes,
            changelog=changelog,
            created_at=created_at or now,
            last_updated=now,
        )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RatingThreshold(BaseModel):
    """Rating counts compared against the minimums that gate profile generation."""

    relevant_count: int
    not_relevant_count: int
    min_relevant: int
    min_not_relevant: int

    @property
    def met(self) -> bool:
        return (
            self.relevant_count >= self.min_relevant
            and self.not_relevant_count >= self.min_not_relevant
        )

    @property
    def message(self) -> str:
        if self.met:
            return "Enough ratings to generate a profile"
        need_relevant = max(0, self.min_relevant - self.relevant_count)
        need_not_relevant = max(0, self.min_not_relevant - self.not_relevant_count)
        return (
            f"Need {need_relevant} more relevant and "
            f"{need_not_relevant} more not relevant ratings"
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "relevant_count": self.relevant_count,
            "not_relevant_count": self.not_relevant_count,
            "min_relevant": self.min_relevant,
            "min_not_relevant": self.min_not_relevant,
            "met": self.met,
            "message": self.message,
        }

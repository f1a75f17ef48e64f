"""Learner progress and entitlement record."""

from datetime import datetime, timezone
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

FREE_LEVELS: frozenset[int] = frozenset({0, 1})
MIN_PAID_LEVEL = 2
MAX_LEVEL = 5
COMPLETION_THRESHOLD = 70


class EntitlementKind(StrEnum):
    """Independent time-boxed entitlements."""

    TUTORING = "tutoring"
    ASSESSMENT = "assessment"

    @property
    def field_name(self) -> str:
        return f"{self.value}_expiry"


class ProblemStat(BaseModel):
    """Answer history for one stable problem id."""

    correct: int = 0
    incorrect: int = 0
    last_reviewed: datetime | None = None

    @property
    def selection_weight(self) -> float:
        """Spaced-repetition weight: misses pull a problem forward, hits push it back."""
        return max(0.1, 1 + self.incorrect * 2 - self.correct * 0.5)


class LastStudied(BaseModel):
    level: int
    topic: str
    timestamp: datetime


class CardProgress(BaseModel):
    """Flash-card browsing position for one deck key (e.g. "2-vocab")."""

    current_index: int = 0
    completed_cards: list[int] = Field(default_factory=list)
    total_cards: int = 0
    last_studied: datetime | None = None


def as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC so stored and supplied times compare safely."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class LearnerProgress(BaseModel):
    """Everything persisted about a learner's access and advancement.

    Only stored facts live here. Whether an entitlement is active or a level
    is reachable is always recomputed by ``kiip_trainer.entitlements.access``.
    """

    model_config = ConfigDict(populate_by_name=True)

    learner_id: str
    current_level: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("current_level", "currentLevel")
    )
    level_progress: dict[int, int] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("level_progress", "levelProgress"),
    )
    completed_levels: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("completed_levels", "completedLevels"),
    )
    purchased_levels: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("purchased_levels", "purchasedLevels"),
    )
    tutoring_expiry: datetime | None = Field(
        default=None, validation_alias=AliasChoices("tutoring_expiry", "aiTutorExpiry")
    )
    assessment_expiry: datetime | None = Field(
        default=None, validation_alias=AliasChoices("assessment_expiry", "cbtExpiry")
    )

    vocabulary_mastered: dict[int, list[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("vocabulary_mastered", "vocabularyMastered"),
    )
    problem_stats: dict[str, ProblemStat] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("problem_stats", "problemStats"),
    )
    last_studied: LastStudied | None = Field(
        default=None, validation_alias=AliasChoices("last_studied", "lastStudied")
    )
    card_progress: dict[str, CardProgress] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("card_progress", "cardProgress"),
    )

    @field_validator("completed_levels", "purchased_levels")
    @classmethod
    def normalize_levels(cls, value: list[int]) -> list[int]:
        return sorted(set(value))

    @field_validator("tutoring_expiry", "assessment_expiry")
    @classmethod
    def expiry_as_utc(cls, value: datetime | None) -> datetime | None:
        return None if value is None else as_utc(value)

    @field_validator("level_progress")
    @classmethod
    def clamp_progress(cls, value: dict[int, int]) -> dict[int, int]:
        return {level: max(0, min(100, pct)) for level, pct in value.items()}

    def expiry_for(self, kind: EntitlementKind) -> datetime | None:
        return getattr(self, kind.field_name)

    def is_completed(self, level: int) -> bool:
        return level in self.completed_levels

    def is_purchased(self, level: int) -> bool:
        return level in self.purchased_levels

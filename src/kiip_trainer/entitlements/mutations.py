"""The only writers of ``LearnerProgress``.

Every function returns a new, re-validated record and leaves its input
untouched, so callers can compare before/after or discard a change freely.
"""

import math
from collections.abc import Iterable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

import structlog

from kiip_trainer.models.progress import (
    COMPLETION_THRESHOLD,
    MAX_LEVEL,
    MIN_PAID_LEVEL,
    CardProgress,
    EntitlementKind,
    LastStudied,
    LearnerProgress,
    ProblemStat,
    as_utc,
)

logger = structlog.get_logger()

DEFAULT_ENTITLEMENT_DAYS = 30


class ProgressPolicy(StrEnum):
    """How a retry's score relates to the level's recorded progress."""

    OVERWRITE = "overwrite"  # latest attempt wins, even when lower
    RATCHET = "ratchet"  # recorded progress never decreases


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _with(progress: LearnerProgress, **changes: Any) -> LearnerProgress:
    data = progress.model_dump()
    data.update(changes)
    return LearnerProgress.model_validate(data)


def purchase_level(
    progress: LearnerProgress, level: int, max_level: int = MAX_LEVEL
) -> LearnerProgress:
    """Unlock a paid level; buying it again changes nothing."""
    if not MIN_PAID_LEVEL <= level <= max_level:
        raise ValueError(
            f"level {level} is not purchasable (valid: {MIN_PAID_LEVEL}-{max_level})"
        )
    if progress.is_purchased(level):
        return progress.model_copy(deep=True)

    logger.info("level_purchased", learner_id=progress.learner_id, level=level)
    return _with(progress, purchased_levels=[*progress.purchased_levels, level])


def purchase_timed_entitlement(
    current_expiry: datetime | None, now: datetime, duration_days: int
) -> datetime:
    """New expiry after buying ``duration_days`` more of a timed entitlement.

    Unused time is kept: an active entitlement is extended from its current
    expiry, an expired or missing one starts from ``now``.
    """
    if duration_days <= 0:
        raise ValueError(f"duration_days must be positive, got {duration_days}")
    now = as_utc(now)
    start = now
    if current_expiry is not None and as_utc(current_expiry) > now:
        start = as_utc(current_expiry)
    return start + timedelta(days=duration_days)


def grant_entitlement(
    progress: LearnerProgress,
    kind: EntitlementKind,
    now: datetime,
    duration_days: int = DEFAULT_ENTITLEMENT_DAYS,
) -> LearnerProgress:
    new_expiry = purchase_timed_entitlement(progress.expiry_for(kind), now, duration_days)
    logger.info(
        "entitlement_granted",
        learner_id=progress.learner_id,
        kind=kind.value,
        expiry=new_expiry.isoformat(),
    )
    return _with(progress, **{kind.field_name: new_expiry})


def record_level_progress(
    progress: LearnerProgress,
    level: int,
    percent: float,
    threshold: int = COMPLETION_THRESHOLD,
    policy: ProgressPolicy = ProgressPolicy.RATCHET,
) -> LearnerProgress:
    """Store a level score and unlock the next level when it passes ``threshold``.

    Args:
        progress: Current learner record.
        level: Level the score belongs to.
        percent: Score, clamped to 0-100.
        threshold: Minimum score that completes the level.
        policy: Whether a lower retry may overwrite a higher recorded score.

    Returns:
        Updated learner record.
    """
    bounded = max(0.0, min(100.0, float(percent)))
    clamped = round_half_up(bounded)
    stored = clamped
    if policy is ProgressPolicy.RATCHET:
        stored = max(clamped, progress.level_progress.get(level, 0))

    changes: dict[str, Any] = {"level_progress": {**progress.level_progress, level: stored}}

    if bounded >= threshold and not progress.is_completed(level):
        changes["completed_levels"] = [*progress.completed_levels, level]
        if level >= progress.current_level:
            changes["current_level"] = level + 1
        logger.info(
            "level_completed",
            learner_id=progress.learner_id,
            level=level,
            percent=clamped,
        )

    logger.info(
        "level_progress_recorded",
        learner_id=progress.learner_id,
        level=level,
        percent=clamped,
        stored=stored,
    )
    return _with(progress, **changes)


def complete_level(progress: LearnerProgress, level: int) -> LearnerProgress:
    """Mark a level finished outright at 100%."""
    if progress.is_completed(level):
        return progress.model_copy(deep=True)
    return _with(
        progress,
        completed_levels=[*progress.completed_levels, level],
        level_progress={**progress.level_progress, level: 100},
        current_level=max(progress.current_level, level + 1),
    )


def record_problem_result(
    progress: LearnerProgress, problem_id: str, correct: bool, now: datetime
) -> LearnerProgress:
    return record_problem_results(progress, [(problem_id, correct)], now)


def record_problem_results(
    progress: LearnerProgress, results: Iterable[tuple[str, bool]], now: datetime
) -> LearnerProgress:
    """Fold a batch of (problem id, correct) answers into the review stats."""
    stats = {key: stat.model_copy() for key, stat in progress.problem_stats.items()}
    for problem_id, correct in results:
        stat = stats.get(problem_id, ProblemStat())
        stats[problem_id] = ProblemStat(
            correct=stat.correct + (1 if correct else 0),
            incorrect=stat.incorrect + (0 if correct else 1),
            last_reviewed=now,
        )
    return _with(progress, problem_stats=stats)


def master_vocabulary(progress: LearnerProgress, level: int, word: str) -> LearnerProgress:
    mastered = progress.vocabulary_mastered.get(level, [])
    if word in mastered:
        return progress.model_copy(deep=True)
    return _with(
        progress,
        vocabulary_mastered={**progress.vocabulary_mastered, level: [*mastered, word]},
    )


def update_last_studied(
    progress: LearnerProgress, level: int, topic: str, now: datetime
) -> LearnerProgress:
    return _with(progress, last_studied=LastStudied(level=level, topic=topic, timestamp=now))


def update_card_progress(
    progress: LearnerProgress,
    key: str,
    current_index: int,
    total_cards: int,
    now: datetime,
) -> LearnerProgress:
    existing = progress.card_progress.get(key, CardProgress())
    updated = existing.model_copy(
        update={"current_index": current_index, "total_cards": total_cards, "last_studied": now}
    )
    return _with(progress, card_progress={**progress.card_progress, key: updated})


def mark_card_completed(
    progress: LearnerProgress, key: str, card_id: int, now: datetime
) -> LearnerProgress:
    existing = progress.card_progress.get(key, CardProgress())
    if card_id in existing.completed_cards:
        return progress.model_copy(deep=True)
    updated = existing.model_copy(
        update={"completed_cards": [*existing.completed_cards, card_id], "last_studied": now}
    )
    return _with(progress, card_progress={**progress.card_progress, key: updated})


def reset_card_progress(progress: LearnerProgress, key: str, now: datetime) -> LearnerProgress:
    return _with(
        progress,
        card_progress={**progress.card_progress, key: CardProgress(last_studied=now)},
    )

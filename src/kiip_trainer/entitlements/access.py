"""Access decisions over a learner's stored entitlements.

Everything here is a pure function of the progress record and the ``now``
passed in. Nothing is cached; expiry is checked lazily at the moment of use.
"""

import math
from datetime import datetime

from kiip_trainer.models.progress import (
    FREE_LEVELS,
    EntitlementKind,
    LearnerProgress,
    as_utc,
)

_SECONDS_PER_DAY = 24 * 60 * 60


def can_access_level(progress: LearnerProgress, level: int) -> bool:
    """Whether the learner may open ``level`` right now.

    Free levels and anything already unlocked stay open. Paid levels need
    both a purchase and completion of the level below.
    """
    if level in FREE_LEVELS or level <= progress.current_level:
        return True
    return progress.is_purchased(level) and progress.is_completed(level - 1)


def is_level_locked(progress: LearnerProgress, level: int) -> bool:
    return not can_access_level(progress, level)


def has_active_entitlement(expiry: datetime | None, now: datetime) -> bool:
    return expiry is not None and as_utc(expiry) > as_utc(now)


def has_entitlement(progress: LearnerProgress, kind: EntitlementKind, now: datetime) -> bool:
    return has_active_entitlement(progress.expiry_for(kind), now)


def days_remaining(expiry: datetime | None, now: datetime) -> int:
    """Whole days left on an entitlement, rounded up; 0 once expired."""
    if not has_active_entitlement(expiry, now):
        return 0
    remaining = (as_utc(expiry) - as_utc(now)).total_seconds()
    return math.ceil(remaining / _SECONDS_PER_DAY)

"""Learner progress persistence (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog

from kiip_trainer.config import get_settings
from kiip_trainer.models.progress import MAX_LEVEL, MIN_PAID_LEVEL, LearnerProgress

logger = structlog.get_logger()

LEGACY_PREMIUM_DAYS = 365


def get_progress_path(learner_id: str) -> Path:
    return get_settings().learners_dir / f"{learner_id}.json"


def migrate_legacy(data: dict, now: datetime, max_level: int = MAX_LEVEL) -> dict:
    """Convert records that predate per-level purchases.

    Old records carry a single ``isPremium`` flag. Premium learners get every
    paid level and a year of both timed entitlements.
    """
    if "isPremium" not in data:
        return data
    data = dict(data)
    if data.pop("isPremium"):
        expiry = (now + timedelta(days=LEGACY_PREMIUM_DAYS)).isoformat()
        data["purchased_levels"] = list(range(MIN_PAID_LEVEL, max_level + 1))
        data["tutoring_expiry"] = expiry
        data["assessment_expiry"] = expiry
    else:
        data["purchased_levels"] = []
        data["tutoring_expiry"] = None
        data["assessment_expiry"] = None
    for legacy_key in ("purchasedLevels", "aiTutorExpiry", "cbtExpiry"):
        data.pop(legacy_key, None)
    logger.info("legacy_progress_migrated", learner_id=data.get("learner_id"))
    return data


def load_progress(
    learner_id: str, now: datetime | None = None, max_level: int | None = None
) -> LearnerProgress:
    path = get_progress_path(learner_id)
    if not path.exists():
        return LearnerProgress(learner_id=learner_id)
    with open(path, encoding="utf-8") as f:
        fcntl.flock(f, fcntl.LOCK_SH)
        data = json.load(f)
        fcntl.flock(f, fcntl.LOCK_UN)
    data.setdefault("learner_id", learner_id)
    if max_level is None:
        max_level = get_settings().max_level
    data = migrate_legacy(data, now or datetime.now(timezone.utc), max_level)
    return LearnerProgress.model_validate(data)


def save_progress(progress: LearnerProgress) -> None:
    path = get_progress_path(progress.learner_id)
    with tempfile.NamedTemporaryFile(
        "w", dir=path.parent, delete=False, suffix=".json", encoding="utf-8"
    ) as tmp:
        json.dump(progress.model_dump(mode="json"), tmp, ensure_ascii=False)
    os.replace(tmp.name, path)
    logger.debug("progress_saved", learner_id=progress.learner_id)

"""Study session history per learner, with aggregate statistics."""

import fcntl
import json
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path

from kiip_trainer.practice.session import SessionSummary

RECENT_SESSION_COUNT = 10


def _history_path(history_dir: Path, learner_id: str) -> Path:
    return history_dir / f"{learner_id}_history.json"


def append_session(
    history_dir: Path,
    learner_id: str,
    summary: SessionSummary,
    started_at: datetime,
    ended_at: datetime,
) -> dict:
    """Append a finished session to the learner's history file."""
    history_path = _history_path(history_dir, learner_id)

    lock_path = history_path.with_suffix(".lock")
    with open(lock_path, "w") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)

        if history_path.exists():
            sessions = json.loads(history_path.read_text(encoding="utf-8"))
        else:
            sessions = []

        entry: dict = {
            "id": str(uuid.uuid4()),
            "date": started_at.isoformat(),
            "level": summary.level,
            "total_questions": summary.answered,
            "correct_answers": summary.correct,
            "xp": summary.xp,
            "percent": summary.percent,
            "terminated_early": summary.terminated_early,
            "time_spent": max(0, round((ended_at - started_at).total_seconds())),
            "wrong_questions": [
                {
                    "problem_id": o.problem_id,
                    "selected_answer": o.chosen,
                    "correct_answer": o.correct_answer,
                    "category": o.kind.value,
                }
                for o in summary.wrong_answers
            ],
        }

        sessions.append(entry)
        with tempfile.NamedTemporaryFile(
            "w", dir=history_dir, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(sessions, tmp, indent=2, ensure_ascii=False)
        os.replace(tmp.name, history_path)
    return entry


def read_history(history_dir: Path, learner_id: str) -> list[dict]:
    """Read a learner's sessions. Returns an empty list if none were saved."""
    history_path = _history_path(history_dir, learner_id)
    if not history_path.exists():
        return []
    return json.loads(history_path.read_text(encoding="utf-8"))


def compute_stats(sessions: list[dict]) -> dict:
    """Aggregate totals per level and wrong-answer counts per problem kind."""
    level_stats: dict[int, dict] = {}
    category_stats: dict[str, dict] = {}
    total_questions = 0
    total_correct = 0
    total_time = 0

    for session in sessions:
        total_questions += session["total_questions"]
        total_correct += session["correct_answers"]
        total_time += session["time_spent"]

        level = level_stats.setdefault(
            session["level"], {"attempted": 0, "correct": 0, "time_spent": 0}
        )
        level["attempted"] += session["total_questions"]
        level["correct"] += session["correct_answers"]
        level["time_spent"] += session["time_spent"]

        # Only wrong answers are itemized, so every entry counts as a miss
        for wrong in session.get("wrong_questions", []):
            category = category_stats.setdefault(
                wrong["category"], {"attempted": 0, "correct": 0}
            )
            category["attempted"] += 1

    return {
        "total_sessions": len(sessions),
        "total_questions": total_questions,
        "total_correct": total_correct,
        "total_time_spent": total_time,
        "level_stats": level_stats,
        "category_stats": category_stats,
        "recent_sessions": list(reversed(sessions[-RECENT_SESSION_COUNT:])),
    }


def weak_categories(stats: dict, limit: int = 5) -> list[dict]:
    """Problem kinds ordered by wrong-answer rate, worst first."""
    rows = []
    for category, stat in stats["category_stats"].items():
        attempted = stat["attempted"]
        wrong_rate = round((1 - stat["correct"] / attempted) * 100) if attempted else 0
        rows.append({"category": category, "wrong_rate": wrong_rate, "misses": attempted})
    rows.sort(key=lambda row: (row["wrong_rate"], row["misses"]), reverse=True)
    return rows[:limit]


def overall_accuracy(stats: dict) -> int:
    if not stats or stats["total_questions"] == 0:
        return 0
    return round(stats["total_correct"] / stats["total_questions"] * 100)

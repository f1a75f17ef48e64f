"""Console entry points: practice sessions and entitlement purchases."""

import argparse
import logging
import os
from datetime import datetime, timezone

import structlog

from kiip_trainer.config import Settings, get_settings
from kiip_trainer.content.loader import load_level_corpus
from kiip_trainer.entitlements.access import days_remaining
from kiip_trainer.entitlements.mutations import grant_entitlement, purchase_level
from kiip_trainer.models.problem import ChoiceProblem, DialogueProblem, ReorderProblem
from kiip_trainer.models.progress import EntitlementKind
from kiip_trainer.practice.randomness import make_rng
from kiip_trainer.practice.session import (
    PRACTICE_SCALE,
    PracticeSession,
    ScoringScale,
    SessionPhase,
    start_session,
)
from kiip_trainer.storage.learner_progress import load_progress, save_progress
from kiip_trainer.storage.study_history import append_session

logger = structlog.get_logger()


def configure_logging() -> None:
    """JSON logs in production, console logs otherwise."""
    is_production = os.getenv("ENV", "development").lower() == "production"
    renderer = (
        structlog.processors.JSONRenderer()
        if is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if is_production else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _ask_choice(options: list[str]) -> str:
    for i, option in enumerate(options, 1):
        print(f"  {i}. {option}")
    while True:
        raw = input("> ").strip()
        if raw.isdigit() and 1 <= int(raw) <= len(options):
            return options[int(raw) - 1]
        print(f"Enter a number between 1 and {len(options)}.")


def _ask_order(tokens: list[str]) -> list[str]:
    print("  " + " / ".join(f"{i}:{t}" for i, t in enumerate(tokens, 1)))
    while True:
        picks = input("order> ").split()
        if sorted(picks) == sorted(str(i) for i in range(1, len(tokens) + 1)):
            return [tokens[int(p) - 1] for p in picks]
        print("Use every number exactly once, separated by spaces.")


def run_console_session(session: PracticeSession) -> None:
    session.begin_quiz()
    while session.phase is SessionPhase.ACTIVE:
        problem = session.current_problem
        if problem is not None:
            print(f"\n[{session.index + 1}/{len(session.problems)}] {problem.prompt}")
            print(f"hearts {session.hearts}  xp {session.xp}  streak {session.streak}")
            if isinstance(problem, ReorderProblem):
                outcome = session.submit_order(_ask_order(problem.tokens))
            else:
                if isinstance(problem, DialogueProblem):
                    for turn in problem.context:
                        print(f"  {turn.speaker}: {'______' if turn.is_blank else turn.text}")
                elif isinstance(problem, ChoiceProblem):
                    print(f"  {problem.example_text or problem.audio_text}")
                outcome = session.submit_answer(_ask_choice(problem.options))
            print("correct" if outcome.is_correct else f"wrong: {outcome.correct_answer}")
        session.advance()


def main(argv: list[str] | None = None) -> None:
    """Run the application."""
    parser = argparse.ArgumentParser(description="KIIP practice session")
    parser.add_argument("learner_id")
    parser.add_argument("level", type=int)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--practice", action="store_true", help="use the practice XP scale")
    args = parser.parse_args(argv)

    configure_logging()
    settings: Settings = get_settings()

    progress = load_progress(args.learner_id, max_level=settings.max_level)
    corpus = load_level_corpus(args.level, settings.corpus_path)
    scale = (
        PRACTICE_SCALE
        if args.practice
        else ScoringScale(base_xp=settings.base_xp, streak_bonus=settings.streak_bonus)
    )

    started_at = datetime.now(timezone.utc)
    try:
        session = start_session(
            progress,
            corpus,
            target_count=settings.target_count,
            rng=make_rng(args.seed),
            scale=scale,
            hearts=settings.hearts,
            completion_floor=settings.completion_floor,
            threshold=settings.completion_threshold,
            progress_policy=settings.progress_policy,
            correct_phrase=settings.correct_phrase,
            incorrect_phrase=settings.incorrect_phrase,
        )
    except PermissionError as e:
        print(str(e))
        raise SystemExit(1) from e

    try:
        run_console_session(session)
    except (KeyboardInterrupt, EOFError):
        # Abandoned sessions commit nothing
        logger.info("practice_session_abandoned", learner_id=args.learner_id)
        return

    save_progress(session.progress)
    summary = session.summary()
    append_session(
        settings.history_dir, args.learner_id, summary, started_at, datetime.now(timezone.utc)
    )
    print(
        f"\nscore {summary.percent}%  xp {summary.xp}  "
        f"{summary.correct}/{summary.answered} correct"
    )


def entitlements_main(argv: list[str] | None = None) -> None:
    """Record a level purchase or a timed entitlement for a learner."""
    parser = argparse.ArgumentParser(description="KIIP learner entitlements")
    commands = parser.add_subparsers(dest="command", required=True)
    purchase = commands.add_parser("purchase", help="unlock a paid level")
    purchase.add_argument("learner_id")
    purchase.add_argument("level", type=int)
    grant = commands.add_parser("grant", help="buy more time on a timed entitlement")
    grant.add_argument("learner_id")
    grant.add_argument("kind", choices=[kind.value for kind in EntitlementKind])
    args = parser.parse_args(argv)

    configure_logging()
    settings: Settings = get_settings()
    progress = load_progress(args.learner_id, max_level=settings.max_level)

    if args.command == "purchase":
        try:
            progress = purchase_level(progress, args.level, max_level=settings.max_level)
        except ValueError as e:
            print(str(e))
            raise SystemExit(1) from e
        save_progress(progress)
        print(f"purchased levels: {progress.purchased_levels}")
        return

    kind = EntitlementKind(args.kind)
    now = datetime.now(timezone.utc)
    progress = grant_entitlement(
        progress, kind, now, duration_days=settings.entitlement_days(kind)
    )
    save_progress(progress)
    print(f"{kind.value}: {days_remaining(progress.expiry_for(kind), now)} days remaining")


if __name__ == "__main__":
    main()

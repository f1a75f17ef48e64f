"""Practice session lifecycle: hearts, XP, streaks and the progress write-back."""

import random
from collections import Counter
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

import structlog
from pydantic import BaseModel, Field

from kiip_trainer.entitlements.access import can_access_level
from kiip_trainer.entitlements.mutations import (
    ProgressPolicy,
    record_level_progress,
    record_problem_results,
    round_half_up,
)
from kiip_trainer.models.content import LevelCorpus
from kiip_trainer.models.problem import (
    ALL_KINDS,
    ChoiceProblem,
    DialogueProblem,
    Problem,
    ProblemKind,
    ReorderProblem,
)
from kiip_trainer.models.progress import COMPLETION_THRESHOLD, LearnerProgress
from kiip_trainer.practice.generator import DEFAULT_TARGET_COUNT, generate_session
from kiip_trainer.practice.speech import Speaker, speak_and_forget

logger = structlog.get_logger()

DEFAULT_HEARTS = 5
DEFAULT_COMPLETION_FLOOR = 50
CORRECT_PHRASE = "정답입니다"
INCORRECT_PHRASE = "오답입니다"


class SessionPhase(StrEnum):
    """Session lifecycle states."""

    INTRO = "intro"
    REVIEWING = "reviewing"
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass(frozen=True)
class ScoringScale:
    """XP awarded per correct answer.

    An answer earns ``base_xp``, plus ``streak_bonus`` once the streak
    (counting this answer) exceeds ``streak_threshold``.
    """

    base_xp: int
    streak_bonus: int
    streak_threshold: int = 2

    def award(self, streak: int) -> int:
        return self.base_xp + (self.streak_bonus if streak > self.streak_threshold else 0)


LEVEL_QUIZ_SCALE = ScoringScale(base_xp=10, streak_bonus=5)
PRACTICE_SCALE = ScoringScale(base_xp=15, streak_bonus=5)


class AnswerOutcome(BaseModel):
    problem_id: str
    kind: ProblemKind
    chosen: str
    correct_answer: str
    is_correct: bool
    xp_awarded: int = 0


class SessionSummary(BaseModel):
    """What survives a finished session."""

    level: int
    problem_count: int
    answered: int
    correct: int
    xp: int
    percent: int
    hearts_left: int
    terminated_early: bool
    wrong_answers: list[AnswerOutcome] = Field(default_factory=list)


def final_percentage(
    xp: int, problem_count: int, base_xp: int, floor: int = DEFAULT_COMPLETION_FLOOR
) -> int:
    """Score a run as a share of the streak-free maximum XP.

    Streak bonuses can push the raw ratio past 100, so it is clamped. Any
    positive result is raised to ``floor``.
    """
    if problem_count <= 0 or base_xp <= 0:
        return 0
    raw = round_half_up(100 * xp / (problem_count * base_xp))
    percent = max(0, min(100, raw))
    if percent > 0:
        percent = max(percent, floor)
    return percent


class PracticeSession:
    """One practice run over a fixed, pre-generated problem list.

    The session starts in ``intro``. ``begin_review`` browses the content,
    ``begin_quiz`` starts scoring. After each answer the caller invokes
    ``advance``. Running out of hearts ends the run on the next ``advance``;
    answering the last problem ends it with a progress write-back. A
    finished session is never restarted; build a new one instead.

    Args:
        level: Level the problems were drawn from.
        problems: Problem list, consumed in order.
        progress: Learner record the result is written back into.
        scale: XP constants.
        hearts: Wrong answers allowed before the run is forfeited.
        speaker: Optional speech service for answer feedback.
        completion_floor: Minimum recorded percentage for a non-zero result.
        threshold: Percentage that completes the level.
        progress_policy: Whether a retry may lower recorded progress.
        clock: Source of ``now`` for problem review timestamps.
    """

    def __init__(
        self,
        level: int,
        problems: Sequence[Problem],
        progress: LearnerProgress,
        scale: ScoringScale = LEVEL_QUIZ_SCALE,
        hearts: int = DEFAULT_HEARTS,
        speaker: Speaker | None = None,
        completion_floor: int = DEFAULT_COMPLETION_FLOOR,
        threshold: int = COMPLETION_THRESHOLD,
        progress_policy: ProgressPolicy = ProgressPolicy.RATCHET,
        correct_phrase: str = CORRECT_PHRASE,
        incorrect_phrase: str = INCORRECT_PHRASE,
        clock: Callable[[], datetime] | None = None,
    ):
        if hearts <= 0:
            raise ValueError(f"hearts must be positive, got {hearts}")
        self.level = level
        self.problems: tuple[Problem, ...] = tuple(problems)
        self.progress = progress
        self.scale = scale
        self.speaker = speaker
        self.completion_floor = completion_floor
        self.threshold = threshold
        self.progress_policy = progress_policy
        self.correct_phrase = correct_phrase
        self.incorrect_phrase = incorrect_phrase
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.phase = SessionPhase.INTRO
        self.index = 0
        self.hearts = hearts
        self.xp = 0
        self.streak = 0
        self.percent: int | None = None
        self.terminated_early = False

        self.selected_option: str | None = None
        self.reorder_buffer: list[str] = []
        self.outcomes: list[AnswerOutcome] = []
        self._answered_current = False

    @property
    def current_problem(self) -> Problem | None:
        if self.phase is SessionPhase.FINISHED or self.index >= len(self.problems):
            return None
        return self.problems[self.index]

    @property
    def is_last(self) -> bool:
        return self.index >= len(self.problems) - 1

    @property
    def answered_current(self) -> bool:
        return self._answered_current

    # Phase transitions

    def begin_review(self) -> None:
        self._require_phase(SessionPhase.INTRO)
        self.phase = SessionPhase.REVIEWING

    def begin_quiz(self) -> None:
        self._require_phase(SessionPhase.INTRO, SessionPhase.REVIEWING)
        self.phase = SessionPhase.ACTIVE
        logger.info("practice_session_started", level=self.level, problems=len(self.problems))

    # Transient per-problem selection

    def select_option(self, option: str) -> None:
        problem = self._require_answerable((ChoiceProblem, DialogueProblem))
        if option not in problem.options:
            raise ValueError(f"{option!r} is not an option of problem {problem.id}")
        self.selected_option = option

    def add_token(self, token: str) -> None:
        """Append a scrambled word to the reorder buffer while copies remain."""
        problem = self._require_answerable((ReorderProblem,))
        if self.reorder_buffer.count(token) >= problem.tokens.count(token):
            raise ValueError(f"{token!r} is not an available token of problem {problem.id}")
        self.reorder_buffer.append(token)

    def remove_token(self, index: int) -> str:
        """Take the word at ``index`` back out of the reorder buffer."""
        problem = self._require_answerable((ReorderProblem,))
        if not 0 <= index < len(self.reorder_buffer):
            raise IndexError(f"no token at position {index} for problem {problem.id}")
        return self.reorder_buffer.pop(index)

    # Answering

    def submit_answer(self, chosen: str | None = None) -> AnswerOutcome:
        """Grade a choice or dialogue problem.

        Args:
            chosen: The picked option; defaults to the current selection.

        Raises:
            ValueError: If the answer was not one of the presented options,
                the session is not active, or the problem was already graded.
        """
        problem = self._require_answerable((ChoiceProblem, DialogueProblem))
        chosen = self.selected_option if chosen is None else chosen
        if chosen is None or chosen not in problem.options:
            raise ValueError(f"{chosen!r} is not an option of problem {problem.id}")
        self.selected_option = chosen
        return self._grade(problem, chosen, chosen == problem.correct_answer)

    def submit_order(self, tokens: Sequence[str] | None = None) -> AnswerOutcome:
        """Grade a reorder problem; defaults to the current reorder buffer."""
        problem = self._require_answerable((ReorderProblem,))
        tokens = list(self.reorder_buffer if tokens is None else tokens)
        if Counter(tokens) - Counter(problem.tokens):
            raise ValueError(f"tokens {tokens!r} were not all offered by problem {problem.id}")
        self.reorder_buffer = tokens
        chosen = " ".join(tokens)
        return self._grade(problem, chosen, chosen == problem.correct_answer)

    def _grade(self, problem: Problem, chosen: str, is_correct: bool) -> AnswerOutcome:
        awarded = 0
        if is_correct:
            self.streak += 1
            awarded = self.scale.award(self.streak)
            self.xp += awarded
        else:
            self.streak = 0
            self.hearts = max(0, self.hearts - 1)

        self._answered_current = True
        outcome = AnswerOutcome(
            problem_id=problem.id,
            kind=problem.kind,
            chosen=chosen,
            correct_answer=problem.correct_answer,
            is_correct=is_correct,
            xp_awarded=awarded,
        )
        self.outcomes.append(outcome)
        logger.debug(
            "answer_graded",
            problem_id=problem.id,
            correct=is_correct,
            streak=self.streak,
            hearts=self.hearts,
            xp=self.xp,
        )
        speak_and_forget(
            self.speaker, self.correct_phrase if is_correct else self.incorrect_phrase
        )
        return outcome

    # Advancing

    def advance(self) -> SessionPhase:
        """Move past the current problem, finishing the run when due."""
        self._require_phase(SessionPhase.ACTIVE)

        if self.hearts == 0:
            self.terminated_early = True
            logger.info(
                "session_force_terminated",
                level=self.level,
                index=self.index,
                problems=len(self.problems),
            )
            self._finish()
        elif self.is_last:
            self._finish()
        else:
            self.index += 1
            self._clear_selection()
        return self.phase

    def _finish(self) -> None:
        self.percent = final_percentage(
            self.xp, len(self.problems), self.scale.base_xp, self.completion_floor
        )
        progress = record_level_progress(
            self.progress,
            self.level,
            self.percent,
            threshold=self.threshold,
            policy=self.progress_policy,
        )
        if self.outcomes:
            progress = record_problem_results(
                progress, [(o.problem_id, o.is_correct) for o in self.outcomes], self._clock()
            )
        self.progress = progress
        self.phase = SessionPhase.FINISHED
        self._clear_selection()
        logger.info(
            "practice_session_finished",
            level=self.level,
            xp=self.xp,
            percent=self.percent,
            terminated_early=self.terminated_early,
        )

    def _clear_selection(self) -> None:
        self.selected_option = None
        self.reorder_buffer = []
        self._answered_current = False

    def summary(self) -> SessionSummary:
        correct = sum(1 for o in self.outcomes if o.is_correct)
        return SessionSummary(
            level=self.level,
            problem_count=len(self.problems),
            answered=len(self.outcomes),
            correct=correct,
            xp=self.xp,
            percent=self.percent or 0,
            hearts_left=self.hearts,
            terminated_early=self.terminated_early,
            wrong_answers=[o for o in self.outcomes if not o.is_correct],
        )

    # Guards

    def _require_phase(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            expected = ", ".join(p.value for p in phases)
            raise ValueError(f"session is {self.phase.value}, expected {expected}")

    def _require_answerable(self, types: tuple[type, ...]):
        self._require_phase(SessionPhase.ACTIVE)
        problem = self.current_problem
        if problem is None:
            raise ValueError("session has no problem to answer")
        if not isinstance(problem, types):
            raise ValueError(f"problem {problem.id} is a {problem.kind.value} problem")
        if self._answered_current:
            raise ValueError(f"problem {problem.id} was already answered")
        return problem


def start_session(
    progress: LearnerProgress,
    corpus: LevelCorpus,
    target_count: int = DEFAULT_TARGET_COUNT,
    rng: random.Random | None = None,
    kinds: Collection[ProblemKind] = ALL_KINDS,
    weighted: bool = True,
    **session_kwargs,
) -> PracticeSession:
    """Check access, generate a fresh problem set and open a new session.

    Raises:
        PermissionError: If the learner cannot access the corpus level.
    """
    if not can_access_level(progress, corpus.level):
        logger.warning(
            "level_access_denied", learner_id=progress.learner_id, level=corpus.level
        )
        raise PermissionError(f"level {corpus.level} is locked for {progress.learner_id}")

    problems = generate_session(
        corpus,
        target_count,
        rng=rng,
        kinds=kinds,
        problem_stats=progress.problem_stats if weighted else None,
    )
    return PracticeSession(corpus.level, problems, progress, **session_kwargs)

"""Tests for the practice session state machine."""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from kiip_trainer.entitlements.mutations import ProgressPolicy
from kiip_trainer.models.problem import (
    ChoiceProblem,
    ContextTurn,
    DialogueProblem,
    ProblemKind,
    ReorderProblem,
)
from kiip_trainer.models.progress import LearnerProgress
from kiip_trainer.practice.randomness import make_rng
from kiip_trainer.practice.session import (
    LEVEL_QUIZ_SCALE,
    PRACTICE_SCALE,
    PracticeSession,
    ScoringScale,
    SessionPhase,
    final_percentage,
    start_session,
)
from kiip_trainer.practice.speech import wait_for_speech

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def choice(i: int) -> ChoiceProblem:
    return ChoiceProblem(
        id=f"listen-{i}",
        kind=ProblemKind.WORD_FROM_AUDIO,
        prompt="듣고 고르세요",
        correct_answer=f"word{i}",
        options=[f"other{i}", f"word{i}"],
        audio_text=f"word{i}",
    )


def reorder() -> ReorderProblem:
    return ReorderProblem(
        id="order-0-0",
        prompt="순서",
        correct_answer="저는 학생 이에요",
        tokens=["이에요", "저는", "학생"],
    )


def dialogue() -> DialogueProblem:
    return DialogueProblem(
        id="dialogue-0-1",
        prompt="대화",
        correct_answer="네, 안녕하세요.",
        options=["안녕히 가세요.", "네, 안녕하세요."],
        context=[
            ContextTurn(speaker="A", text="안녕하세요?"),
            ContextTurn(speaker="B", text="네, 안녕하세요.", is_blank=True),
        ],
    )


def make_session(problems, level=2, progress=None, **kwargs) -> PracticeSession:
    progress = progress or LearnerProgress(learner_id="u", current_level=level)
    session = PracticeSession(level, problems, progress, clock=lambda: NOW, **kwargs)
    session.begin_quiz()
    return session


def answer_all(session: PracticeSession, correct: bool) -> None:
    while session.phase is SessionPhase.ACTIVE:
        problem = session.current_problem
        wrong = next(o for o in problem.options if o != problem.correct_answer)
        session.submit_answer(problem.correct_answer if correct else wrong)
        session.advance()


class TestPhases:
    def test_starts_in_intro(self):
        session = PracticeSession(0, [choice(0)], LearnerProgress(learner_id="u"))
        assert session.phase is SessionPhase.INTRO
        assert session.hearts == 5
        assert (session.xp, session.streak, session.index) == (0, 0, 0)

    def test_review_then_quiz(self):
        session = PracticeSession(0, [choice(0)], LearnerProgress(learner_id="u"))
        session.begin_review()
        assert session.phase is SessionPhase.REVIEWING
        session.begin_quiz()
        assert session.phase is SessionPhase.ACTIVE

    def test_quiz_directly_from_intro(self):
        assert make_session([choice(0)]).phase is SessionPhase.ACTIVE

    def test_cannot_review_after_quiz_started(self):
        session = make_session([choice(0)])
        with pytest.raises(ValueError):
            session.begin_review()

    def test_cannot_answer_before_quiz(self):
        session = PracticeSession(0, [choice(0)], LearnerProgress(learner_id="u"))
        with pytest.raises(ValueError):
            session.submit_answer("word0")

    def test_finished_is_terminal(self):
        session = make_session([choice(0)])
        session.submit_answer("word0")
        session.advance()
        assert session.phase is SessionPhase.FINISHED
        assert session.current_problem is None
        with pytest.raises(ValueError):
            session.advance()
        with pytest.raises(ValueError):
            session.begin_quiz()

    def test_rejects_non_positive_hearts(self):
        with pytest.raises(ValueError):
            PracticeSession(0, [], LearnerProgress(learner_id="u"), hearts=0)


class TestScoring:
    def test_correct_answer(self):
        session = make_session([choice(0), choice(1)])
        outcome = session.submit_answer("word0")
        assert outcome.is_correct
        assert outcome.xp_awarded == 10
        assert (session.streak, session.xp, session.hearts) == (1, 10, 5)

    def test_wrong_answer_costs_heart_and_streak(self):
        session = make_session([choice(0), choice(1)])
        session.submit_answer("word0")
        session.advance()
        outcome = session.submit_answer("other1")
        assert not outcome.is_correct
        assert (session.streak, session.xp, session.hearts) == (0, 10, 4)

    def test_streak_bonus_starts_on_third_answer(self):
        session = make_session([choice(i) for i in range(4)])
        awards = []
        for i in range(4):
            awards.append(session.submit_answer(f"word{i}").xp_awarded)
            session.advance()
        assert awards == [10, 10, 15, 15]

    def test_practice_scale(self):
        assert PRACTICE_SCALE.award(1) == 15
        assert PRACTICE_SCALE.award(3) == 20

    def test_answer_not_offered_is_rejected(self):
        session = make_session([choice(0)])
        with pytest.raises(ValueError):
            session.submit_answer("not-an-option")
        assert session.hearts == 5
        assert session.outcomes == []

    def test_cannot_answer_twice(self):
        session = make_session([choice(0), choice(1)])
        session.submit_answer("other0")
        with pytest.raises(ValueError):
            session.submit_answer("word0")
        assert session.hearts == 4

    def test_selected_option_is_submitted(self):
        session = make_session([choice(0)])
        session.select_option("word0")
        assert session.submit_answer().is_correct

    def test_dialogue_problem(self):
        session = make_session([dialogue()])
        assert session.submit_answer("네, 안녕하세요.").is_correct

    def test_choice_submit_on_reorder_problem_rejected(self):
        session = make_session([reorder()])
        with pytest.raises(ValueError):
            session.submit_answer("저는")


class TestReorder:
    def test_correct_order(self):
        session = make_session([reorder()])
        outcome = session.submit_order(["저는", "학생", "이에요"])
        assert outcome.is_correct
        assert outcome.chosen == "저는 학생 이에요"

    def test_wrong_order(self):
        session = make_session([reorder()])
        assert not session.submit_order(["학생", "저는", "이에요"]).is_correct
        assert session.hearts == 4

    def test_partial_order_is_wrong(self):
        session = make_session([reorder()])
        assert not session.submit_order(["저는", "학생"]).is_correct

    def test_foreign_token_rejected(self):
        session = make_session([reorder()])
        with pytest.raises(ValueError):
            session.submit_order(["저는", "선생님", "이에요"])

    def test_token_buffer(self):
        session = make_session([reorder()])
        for token in ["저는", "이에요", "학생"]:
            session.add_token(token)
        assert session.remove_token(1) == "이에요"
        session.add_token("이에요")
        assert session.reorder_buffer == ["저는", "학생", "이에요"]
        assert session.submit_order().is_correct

    def test_repeated_tokens_can_all_be_placed(self):
        problem = ReorderProblem(
            id="order-0-1",
            prompt="순서",
            correct_answer="네 네 알겠어요",
            tokens=["네", "알겠어요", "네"],
        )
        session = make_session([problem])
        for token in ["네", "네", "알겠어요"]:
            session.add_token(token)
        assert session.reorder_buffer == ["네", "네", "알겠어요"]
        with pytest.raises(ValueError):
            session.add_token("네")
        session.remove_token(0)
        assert session.reorder_buffer == ["네", "알겠어요"]
        session.add_token("네")
        assert not session.submit_order().is_correct

    def test_unknown_token_rejected(self):
        session = make_session([reorder()])
        with pytest.raises(ValueError):
            session.add_token("선생님")

    def test_remove_out_of_range(self):
        session = make_session([reorder()])
        session.add_token("저는")
        with pytest.raises(IndexError):
            session.remove_token(1)


class TestAdvance:
    def test_clears_transient_state(self):
        session = make_session([reorder(), choice(1)])
        session.add_token("저는")
        session.advance()
        assert session.index == 1
        assert session.reorder_buffer == []
        assert session.selected_option is None
        assert not session.answered_current

    def test_ten_correct_answers(self):
        progress = LearnerProgress(learner_id="u", current_level=2)
        session = make_session([choice(i) for i in range(10)], progress=progress)
        answer_all(session, correct=True)
        assert session.xp == 140
        assert session.percent == 100
        assert session.progress.level_progress[2] == 100
        assert 2 in session.progress.completed_levels
        assert session.progress.current_level == 3
        assert session.hearts == 5

    def test_five_wrong_answers_force_terminate(self):
        session = make_session([choice(i) for i in range(10)])
        for i in range(5):
            session.submit_answer(f"other{i}")
            session.advance()
        assert session.hearts == 0
        assert session.phase is SessionPhase.FINISHED
        assert session.terminated_early
        assert session.index == 4
        assert len(session.outcomes) == 5

    def test_forced_termination_records_progress(self):
        session = make_session([choice(i) for i in range(10)], hearts=1)
        session.submit_answer("other0")
        session.advance()
        assert session.percent == 0
        assert session.progress.level_progress[2] == 0
        assert session.progress.problem_stats["listen-0"].incorrect == 1

    def test_abandoned_session_records_nothing(self):
        progress = LearnerProgress(learner_id="u", current_level=2)
        session = make_session([choice(i) for i in range(3)], progress=progress)
        session.submit_answer("word0")
        session.advance()
        assert session.progress is progress
        assert session.progress.problem_stats == {}

    def test_partial_score_raised_to_floor(self):
        session = make_session([choice(i) for i in range(10)])
        session.submit_answer("word0")
        while session.phase is SessionPhase.ACTIVE:
            session.advance()
        assert session.xp == 10
        assert session.percent == 50
        assert 2 not in session.progress.completed_levels
        assert session.progress.current_level == 2

    def test_mixed_run(self):
        session = make_session([choice(i) for i in range(10)])
        for i in range(10):
            session.submit_answer(f"other{i}" if 1 <= i <= 4 else f"word{i}")
            session.advance()
        # 10 + 10 + 10 + 15 + 15 + 15
        assert session.xp == 75
        assert session.percent == 75
        assert session.hearts == 1
        assert 2 in session.progress.completed_levels

    def test_empty_problem_list_finishes_at_zero(self):
        session = make_session([])
        assert session.current_problem is None
        assert session.advance() is SessionPhase.FINISHED
        assert session.percent == 0

    def test_overwrite_policy_passed_through(self):
        progress = LearnerProgress(learner_id="u", current_level=3, level_progress={2: 90})
        session = make_session(
            [choice(0)], progress=progress, progress_policy=ProgressPolicy.OVERWRITE
        )
        session.submit_answer("other0")
        session.advance()
        assert session.progress.level_progress[2] == 0

    def test_summary(self):
        session = make_session([choice(0), choice(1)])
        session.submit_answer("word0")
        session.advance()
        session.submit_answer("other1")
        session.advance()
        summary = session.summary()
        assert summary.answered == 2
        assert summary.correct == 1
        assert summary.xp == 10
        assert summary.percent == 50
        assert [w.problem_id for w in summary.wrong_answers] == ["listen-1"]


class TestSpeech:
    def test_feedback_phrases(self):
        speaker = MagicMock(return_value=None)
        session = make_session([choice(0), choice(1)], speaker=speaker)
        session.submit_answer("word0")
        session.advance()
        session.submit_answer("other1")
        wait_for_speech()
        assert [c.args[0] for c in speaker.call_args_list] == ["정답입니다", "오답입니다"]

    def test_speaker_failure_does_not_block(self):
        speaker = MagicMock(side_effect=RuntimeError("tts down"))
        session = make_session([choice(0)], speaker=speaker)
        assert session.submit_answer("word0").is_correct
        assert session.advance() is SessionPhase.FINISHED
        wait_for_speech()

    def test_slow_speaker_does_not_delay_grading(self):
        release = threading.Event()
        spoken = []

        def slow_speaker(text: str) -> None:
            release.wait(timeout=5)
            spoken.append(text)

        session = make_session([choice(0), choice(1)], speaker=slow_speaker)
        assert session.submit_answer("word0").is_correct
        assert session.advance() is SessionPhase.ACTIVE
        assert spoken == []
        release.set()
        wait_for_speech()
        assert spoken == ["정답입니다"]


class TestFinalPercentage:
    def test_spec_example(self):
        assert final_percentage(140, 10, 10) == 100

    def test_zero_stays_zero(self):
        assert final_percentage(0, 10, 10) == 0

    def test_floor_applies_to_positive(self):
        assert final_percentage(10, 10, 10) == 50

    def test_floor_disabled(self):
        assert final_percentage(10, 10, 10, floor=0) == 10

    def test_rounds_half_up(self):
        # 100 * 5 / 200 = 2.5
        assert final_percentage(5, 20, 10, floor=0) == 3

    def test_no_problems(self):
        assert final_percentage(0, 0, 10) == 0


class TestStartSession:
    def test_locked_level_refused(self, corpus):
        corpus = corpus.model_copy(update={"level": 3})
        with pytest.raises(PermissionError):
            start_session(LearnerProgress(learner_id="u"), corpus)

    def test_builds_fresh_session(self, corpus):
        progress = LearnerProgress(learner_id="u")
        session = start_session(progress, corpus, target_count=10, rng=make_rng(7))
        assert session.phase is SessionPhase.INTRO
        assert len(session.problems) == 10
        assert session.level == corpus.level
        assert session.scale == LEVEL_QUIZ_SCALE

    def test_restart_is_new_object(self, corpus):
        progress = LearnerProgress(learner_id="u")
        first = start_session(progress, corpus, rng=make_rng(1))
        second = start_session(progress, corpus, rng=make_rng(2))
        assert first is not second

    def test_session_kwargs_forwarded(self, corpus):
        scale = ScoringScale(base_xp=15, streak_bonus=5)
        session = start_session(
            LearnerProgress(learner_id="u"), corpus, rng=make_rng(0), scale=scale, hearts=3
        )
        assert session.scale is scale
        assert session.hearts == 3

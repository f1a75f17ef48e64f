"""Procedural practice-set generation from a level's content corpus."""

import random
import re
from collections import Counter
from collections.abc import Collection, Mapping

import structlog

from kiip_trainer.models.content import LevelCorpus
from kiip_trainer.models.problem import (
    ALL_KINDS,
    BLANK,
    ChoiceProblem,
    ContextTurn,
    DialogueProblem,
    Problem,
    ProblemKind,
    ReorderProblem,
)
from kiip_trainer.models.progress import ProblemStat
from kiip_trainer.practice.randomness import make_rng, sample_up_to, shuffled, unique

logger = structlog.get_logger()

DEFAULT_TARGET_COUNT = 10
DISTRACTOR_COUNT = 3
# Dialogue distractors must be within this many characters of the answer
LENGTH_TOLERANCE = 15
MIN_REORDER_WORDS = 3

PROMPTS: dict[ProblemKind, str] = {
    ProblemKind.CLOZE_FILL: "빈칸에 알맞은 말을 고르세요",
    ProblemKind.WORD_FROM_AUDIO: "다음을 듣고 알맞은 단어를 고르세요",
    ProblemKind.DIALOGUE_TURN_COMPLETION: "대화를 완성하세요",
    ProblemKind.SENTENCE_REORDER: "문장을 올바른 순서로 만드세요",
}


def _slug(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip())


def _options(correct: str, pool: list[str], rng: random.Random) -> list[str]:
    """Correct answer plus up to three distinct distractors, shuffled."""
    candidates = [c for c in unique(pool) if c != correct]
    distractors = sample_up_to(candidates, DISTRACTOR_COUNT, rng)
    return shuffled([*distractors, correct], rng)


def _vocabulary_problems(
    corpus: LevelCorpus, kinds: Collection[ProblemKind], rng: random.Random
) -> list[Problem]:
    problems: list[Problem] = []
    headwords = corpus.headwords

    for entry in corpus.vocabulary:
        first_example = entry.examples[0] if entry.examples else ""
        if ProblemKind.CLOZE_FILL in kinds and entry.word and entry.word in first_example:
            problems.append(
                ChoiceProblem(
                    id=f"cloze-{_slug(entry.word)}",
                    kind=ProblemKind.CLOZE_FILL,
                    prompt=PROMPTS[ProblemKind.CLOZE_FILL],
                    example_text=first_example.replace(entry.word, BLANK, 1),
                    correct_answer=entry.word,
                    options=_options(entry.word, headwords, rng),
                    audio_text=first_example,
                )
            )
        if ProblemKind.WORD_FROM_AUDIO in kinds:
            problems.append(
                ChoiceProblem(
                    id=f"listen-{_slug(entry.word)}",
                    kind=ProblemKind.WORD_FROM_AUDIO,
                    prompt=PROMPTS[ProblemKind.WORD_FROM_AUDIO],
                    correct_answer=entry.word,
                    options=_options(entry.word, headwords, rng),
                    audio_text=entry.word,
                )
            )
    return problems


def _dialogue_problems(
    corpus: LevelCorpus, kinds: Collection[ProblemKind], rng: random.Random
) -> list[Problem]:
    problems: list[Problem] = []
    all_texts = corpus.all_turn_texts

    for d_idx, dialogue in enumerate(corpus.dialogues):
        key = _slug(dialogue.id) if dialogue.id.strip() else str(d_idx)
        for t_idx, turn in enumerate(dialogue.turns):
            if ProblemKind.DIALOGUE_TURN_COMPLETION in kinds:
                close = [
                    text
                    for text in all_texts
                    if abs(len(text) - len(turn.text)) < LENGTH_TOLERANCE
                ]
                problems.append(
                    DialogueProblem(
                        id=f"dialogue-{key}-{t_idx}",
                        prompt=PROMPTS[ProblemKind.DIALOGUE_TURN_COMPLETION],
                        correct_answer=turn.text,
                        options=_options(turn.text, close, rng),
                        context=[
                            ContextTurn(
                                speaker=other.speaker,
                                text=other.text,
                                is_blank=i == t_idx,
                            )
                            for i, other in enumerate(dialogue.turns)
                        ],
                        audio_text=". ".join(t.text for t in dialogue.turns),
                    )
                )
            if ProblemKind.SENTENCE_REORDER in kinds and turn.word_count >= MIN_REORDER_WORDS:
                problems.append(
                    ReorderProblem(
                        id=f"order-{key}-{t_idx}",
                        prompt=PROMPTS[ProblemKind.SENTENCE_REORDER],
                        correct_answer=" ".join(turn.text.split()),
                        tokens=shuffled(turn.text.split(), rng),
                        audio_text=turn.text,
                    )
                )
    return problems


def _unique_ids(pool: list[Problem]) -> list[Problem]:
    """Suffix repeated ids (e.g. a headword listed twice) with their ordinal."""
    seen: Counter[str] = Counter()
    result = []
    for problem in pool:
        seen[problem.id] += 1
        if seen[problem.id] > 1:
            problem = problem.model_copy(update={"id": f"{problem.id}-{seen[problem.id]}"})
        result.append(problem)
    return result


def build_problem_pool(
    corpus: LevelCorpus,
    rng: random.Random | None = None,
    kinds: Collection[ProblemKind] = ALL_KINDS,
) -> list[Problem]:
    """Every problem a corpus yields, in corpus order."""
    rng = rng or make_rng()
    pool = _vocabulary_problems(corpus, kinds, rng) + _dialogue_problems(corpus, kinds, rng)
    return _unique_ids(pool)


def _weighted_order(
    pool: list[Problem], stats: Mapping[str, ProblemStat], rng: random.Random
) -> list[Problem]:
    """Order problems by ``weight * U(0, 1)``, highest first."""
    keyed = []
    for problem in pool:
        stat = stats.get(problem.id)
        weight = stat.selection_weight if stat else 1.0
        keyed.append((weight * rng.random(), problem))
    keyed.sort(key=lambda pair: pair[0], reverse=True)
    return [problem for _, problem in keyed]


def generate_session(
    corpus: LevelCorpus,
    target_count: int = DEFAULT_TARGET_COUNT,
    rng: random.Random | None = None,
    kinds: Collection[ProblemKind] = ALL_KINDS,
    problem_stats: Mapping[str, ProblemStat] | None = None,
) -> list[Problem]:
    """Build a shuffled practice set of at most ``target_count`` problems.

    Args:
        corpus: Vocabulary and dialogues for one level.
        target_count: Maximum number of problems to return.
        rng: Random source; seed it for reproducible sets.
        kinds: Problem kinds to generate.
        problem_stats: Past answer history by problem id. When given,
            problems the learner has missed are more likely to be chosen.

    Returns:
        The selected problems. A thin corpus yields a shorter list.
    """
    if target_count < 0:
        raise ValueError(f"target_count must be non-negative, got {target_count}")

    rng = rng or make_rng()
    pool = build_problem_pool(corpus, rng, kinds)

    if problem_stats:
        ordered = _weighted_order(pool, problem_stats, rng)
    else:
        ordered = shuffled(pool, rng)
    selected = ordered[:target_count]

    logger.info(
        "practice_set_generated",
        level=corpus.level,
        pool_size=len(pool),
        selected=len(selected),
        weighted=bool(problem_stats),
    )
    return selected

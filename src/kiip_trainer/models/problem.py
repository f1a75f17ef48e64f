"""Practice problem models.

Each problem kind carries its own payload shape. Choice problems hold a
shuffled option list, dialogue problems additionally carry the full turn
sequence with one blank, and reorder problems hold scrambled tokens instead
of options.
"""

from collections import Counter
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

BLANK = "______"


class ProblemKind(StrEnum):
    WORD_FROM_AUDIO = "word_from_audio"
    CLOZE_FILL = "cloze_fill"
    DIALOGUE_TURN_COMPLETION = "dialogue_turn_completion"
    SENTENCE_REORDER = "sentence_reorder"


ALL_KINDS: frozenset[ProblemKind] = frozenset(ProblemKind)


class _ProblemBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    prompt: str
    correct_answer: str
    audio_text: str | None = None


class _OptionsMixin(BaseModel):
    options: list[str]

    @model_validator(mode="after")
    def check_options(self):
        if len(set(self.options)) != len(self.options):
            raise ValueError("options must not contain duplicates")
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        return self


class ChoiceProblem(_OptionsMixin, _ProblemBase):
    """Pick the headword, either by ear or to fill a blank in an example."""

    kind: Literal[ProblemKind.WORD_FROM_AUDIO, ProblemKind.CLOZE_FILL]
    example_text: str | None = None


class ContextTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: str
    text: str
    is_blank: bool = False


class DialogueProblem(_OptionsMixin, _ProblemBase):
    """Choose the missing line of a dialogue."""

    kind: Literal[ProblemKind.DIALOGUE_TURN_COMPLETION] = ProblemKind.DIALOGUE_TURN_COMPLETION
    context: list[ContextTurn]

    @model_validator(mode="after")
    def check_single_blank(self):
        if sum(turn.is_blank for turn in self.context) != 1:
            raise ValueError("dialogue context must flag exactly one blank turn")
        return self

    @property
    def blank_index(self) -> int:
        return next(i for i, turn in enumerate(self.context) if turn.is_blank)


class ReorderProblem(_ProblemBase):
    """Rebuild a sentence from its scrambled words."""

    kind: Literal[ProblemKind.SENTENCE_REORDER] = ProblemKind.SENTENCE_REORDER
    tokens: list[str]

    @model_validator(mode="after")
    def check_tokens(self):
        if Counter(self.tokens) != Counter(self.correct_answer.split()):
            raise ValueError("tokens must be a permutation of the answer's words")
        return self


Problem = Annotated[
    ChoiceProblem | DialogueProblem | ReorderProblem,
    Field(discriminator="kind"),
]

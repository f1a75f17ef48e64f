"""Read-only content corpus models (vocabulary and scripted dialogues)."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class VocabularyEntry(BaseModel):
    """A headword with its meaning and example sentences."""

    model_config = ConfigDict(frozen=True)

    word: str
    meaning: str = ""
    pronunciation: str = ""
    topic: str = ""
    examples: list[str] = Field(default_factory=list)


class DialogueTurn(BaseModel):
    """One line of a scripted dialogue."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    speaker: str = ""
    text: str = Field(validation_alias=AliasChoices("text", "korean"))
    translation: str = Field(
        default="", validation_alias=AliasChoices("translation", "english")
    )

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class Dialogue(BaseModel):
    """An ordered sequence of turns for one situation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Stable key for problem ids; falls back to the dialogue's position
    id: str = ""
    situation: str = ""
    turns: list[DialogueTurn] = Field(
        default_factory=list, validation_alias=AliasChoices("turns", "lines")
    )


class LevelCorpus(BaseModel):
    """All practice content for a single level."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=0)
    title: str = ""
    description: str = ""
    vocabulary: list[VocabularyEntry] = Field(default_factory=list)
    dialogues: list[Dialogue] = Field(default_factory=list)

    @property
    def headwords(self) -> list[str]:
        return [entry.word for entry in self.vocabulary]

    @property
    def all_turn_texts(self) -> list[str]:
        """Texts of every turn across every dialogue, in corpus order."""
        return [turn.text for dialogue in self.dialogues for turn in dialogue.turns]

"""Shared fixtures: small level corpora."""

import pytest

from kiip_trainer.models.content import Dialogue, DialogueTurn, LevelCorpus, VocabularyEntry


def make_corpus(level: int = 1) -> LevelCorpus:
    return LevelCorpus(
        level=level,
        vocabulary=[
            VocabularyEntry(word="사과", meaning="apple", examples=["이 사과 얼마예요?"]),
            VocabularyEntry(word="은행", meaning="bank", examples=["은행이 어디에 있어요?"]),
            VocabularyEntry(word="비빔밥", meaning="bibimbap", examples=["비빔밥 하나 주세요."]),
            # Example does not contain the headword: no cloze problem
            VocabularyEntry(word="비싸다", meaning="expensive", examples=["너무 비싸요."]),
            VocabularyEntry(word="병원", meaning="hospital", examples=[]),
        ],
        dialogues=[
            Dialogue(
                situation="물건 사기",
                turns=[
                    DialogueTurn(speaker="손님", text="아저씨, 이 사과 얼마예요?"),
                    DialogueTurn(speaker="주인", text="세 개에 오천 원이에요."),
                    DialogueTurn(speaker="손님", text="너무 비싸요."),
                ],
            ),
            Dialogue(
                situation="길 묻기",
                turns=[
                    DialogueTurn(speaker="행인", text="실례합니다. 은행이 어디에 있어요?"),
                    DialogueTurn(speaker="주민", text="저기 병원 옆에 있어요."),
                ],
            ),
        ],
    )


@pytest.fixture
def corpus() -> LevelCorpus:
    return make_corpus()

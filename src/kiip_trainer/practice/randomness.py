"""Shuffling and sampling helpers with an injectable random source."""

import random
from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")


def make_rng(seed: int | None = None) -> random.Random:
    """Create a generator; pass a seed for reproducible sessions."""
    return random.Random(seed)


def shuffled(items: Iterable[T], rng: random.Random) -> list[T]:
    """Return a shuffled copy, leaving ``items`` untouched."""
    result = list(items)
    rng.shuffle(result)
    return result


def sample_up_to(items: Sequence[T], k: int, rng: random.Random) -> list[T]:
    """Sample ``k`` items without replacement, or all of them if fewer exist."""
    return rng.sample(list(items), min(max(k, 0), len(items)))


def unique(items: Iterable[T]) -> list[T]:
    """Drop repeated values, keeping first-seen order."""
    return list(dict.fromkeys(items))

"""Injectable randomness sources.

Every piece of the simulation that needs entropy takes a ``RandomSource``
instead of calling the ``random`` module directly, so tests can replay
exact sequences.
"""

import math
import random
from typing import Iterable, List, Optional, Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """Supplies uniform floats in [0, 1)."""

    def random(self) -> float:
        ...


class SeededRandom:
    """RandomSource backed by a private ``random.Random`` instance."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = random.Random(seed)

    def random(self) -> float:
        return self._rng.random()


class ScriptedRandom:
    """RandomSource that replays fixed values, then returns ``fallback``."""

    def __init__(self, values: Iterable[float] = (), fallback: float = 0.5):
        self._values: List[float] = [self._check(v) for v in values]
        self._fallback = self._check(fallback)
        self.draws = 0

    @staticmethod
    def _check(value: float) -> float:
        if not 0.0 <= value < 1.0:
            raise ValueError(f"Random value out of range [0, 1): {value}")
        return value

    def extend(self, values: Iterable[float]) -> None:
        self._values.extend(self._check(v) for v in values)

    @property
    def remaining(self) -> int:
        return len(self._values)

    def random(self) -> float:
        self.draws += 1
        if self._values:
            return self._values.pop(0)
        return self._fallback


def drift(rand: RandomSource) -> float:
    """Uniform step in [-1.5, 1.5)."""
    return (rand.random() - 0.5) * 3


def pick(rand: RandomSource, items: Sequence[T]) -> T:
    """Pick one item uniformly."""
    return items[math.floor(rand.random() * len(items))]


def randint_below(rand: RandomSource, span: int, offset: int = 0) -> int:
    """Uniform integer in [offset, offset + span)."""
    return math.floor(rand.random() * span) + offset

from __future__ import annotations

import random
from collections.abc import Sequence
from typing import Protocol, TypeVar


T = TypeVar("T")


class FailurePolicy(Protocol):
    def should_fail(self) -> bool: ...

    def choose(self, options: Sequence[T]) -> T: ...


class RandomFailurePolicy:
    """Synthetic failure injection backed by a private, seedable RNG."""

    def __init__(self, failure_rate: float, seed: int | None = None) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self._rng = random.Random(seed)

    def should_fail(self) -> bool:
        return self._rng.random() < self.failure_rate

    def choose(self, options: Sequence[T]) -> T:
        if not options:
            raise ValueError("Cannot choose from an empty sequence")
        return self._rng.choice(options)

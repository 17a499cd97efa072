"""
Injectable time and randomness sources.

Decision code never calls datetime.now() or the random module directly; it
receives a Clock and a RandomSource so tests can pin both.
"""

from __future__ import annotations

import random as _random
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a given instant; advance() moves it forward."""

    def __init__(self, moment: datetime):
        self._moment = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)

    def advance(self, **delta) -> datetime:
        self._moment = self._moment + timedelta(**delta)
        return self._moment


class RandomSource:
    def random(self) -> float:
        """Uniform float in [0, 1)."""
        raise NotImplementedError

    def choice(self, options: Sequence[T]) -> T:
        raise NotImplementedError


class DefaultRandom(RandomSource):
    """Seedable Mersenne Twister draws. Not suitable for anything security sensitive."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = _random.Random(seed)

    def random(self) -> float:
        return self._rng.random()

    def choice(self, options: Sequence[T]) -> T:
        return self._rng.choice(options)


class SequenceRandom(RandomSource):
    """
    Replays a fixed list of draws, cycling when exhausted.

    choice() consumes one draw as well and maps it onto the options, so a
    scripted sequence fully determines every pick.
    """

    def __init__(self, draws: List[float]):
        if not draws:
            raise ValueError("SequenceRandom needs at least one draw")
        self._draws = list(draws)
        self._index = 0
        self.consumed = 0

    def random(self) -> float:
        value = self._draws[self._index % len(self._draws)]
        self._index += 1
        self.consumed += 1
        return value

    def choice(self, options: Sequence[T]) -> T:
        if not options:
            raise IndexError("Cannot choose from an empty sequence")
        position = min(int(self.random() * len(options)), len(options) - 1)
        return options[position]


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)

"""Probabilistic admission sampling."""

from __future__ import annotations

import random
from collections.abc import Callable
from typing import Protocol


class Sampler(Protocol):
    """Protocol for admission samplers."""

    def should_sample(self) -> bool:
        """Return True when the next event should be kept."""
        ...


class ProbabilisticSampler:
    """Keep each event independently with probability *rate*.

    No state is carried between calls, so two consecutive decisions are
    always independent.

    Parameters
    ----------
    rate:
        Probability in ``[0, 1]`` of keeping an event.
    random_source:
        Zero-argument callable returning a float uniformly drawn from
        ``[0, 1)``.  Defaults to :func:`random.random`.
    """

    def __init__(self, rate: float, random_source: Callable[[], float] = random.random) -> None:
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"Sampling rate must be within [0, 1], got {rate}")
        self._rate = rate
        self._random = random_source

    @property
    def rate(self) -> float:
        return self._rate

    def should_sample(self) -> bool:
        if self._rate >= 1.0:
            return True
        if self._rate <= 0.0:
            return False
        return self._random() < self._rate  # noqa: S311

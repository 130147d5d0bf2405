"""
Random Sampling.

The Monte Carlo engine draws every random number through a `Sampler`
wrapping an injectable uniform source. Anything with a `random() -> float`
method in [0, 1) works — tests pass `random.Random(seed)` for reproducible
runs; production gets a fresh OS-seeded generator per run.

Normal deviates use the Box–Muller transform from two independent uniforms.
"""

import math
import random
from typing import Optional, Protocol


class RandomSource(Protocol):
    """Uniform [0, 1) source."""

    def random(self) -> float: ...


def make_random_source(seed: Optional[int] = None) -> random.Random:
    """A private generator; seed=None seeds from OS entropy."""
    return random.Random(seed)


class Sampler:
    """Uniform, Bernoulli and standard-normal draws from one source."""

    def __init__(self, source: Optional[RandomSource] = None):
        self.source = source if source is not None else make_random_source()

    def uniform(self) -> float:
        return self.source.random()

    def bernoulli(self, p: float) -> bool:
        return self.source.random() < p

    def _open_uniform(self) -> float:
        # (0, 1): log(0) is undefined
        u = 0.0
        while u == 0.0:
            u = self.source.random()
        return u

    def standard_normal(self) -> float:
        """N(0, 1) via Box–Muller (cosine branch)."""
        u = self._open_uniform()
        v = self._open_uniform()
        return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)

"""Pre-generated uniform random numbers used to break EM symmetry."""

from __future__ import annotations

import numpy as np


class RandomPool:
    """Batch of uniform ``[0, 1)`` values drawn ahead of time.

    Parameters
    ----------
    size : int
        Number of values generated per refill.  Rounded up to a multiple of 8.
    seed : int, optional
        Seed for the underlying :class:`numpy.random.Generator`.  Two pools
        built with the same seed yield the same stream.
    """

    def __init__(self, size: int = 500_000, seed: int | None = None) -> None:
        if size < 1:
            raise ValueError("size must be positive")
        self.size = -(-size // 8) * 8
        self._rng = np.random.default_rng(seed)
        self._pool = np.empty(self.size)
        self._index = 0
        self._refill()

    def _refill(self) -> None:
        self._rng.random(out=self._pool)
        self._index = 0

    def next(self) -> float:
        if self._index >= self.size:
            self._refill()
        value = float(self._pool[self._index])
        self._index += 1
        return value

    def next_batch(self, count: int) -> np.ndarray:
        """Return ``count`` values as a new array."""
        if count < 0:
            raise ValueError("count must be >= 0")
        if count > self.size:
            return self._rng.random(count)
        if self._index + count > self.size:
            self._refill()
        batch = self._pool[self._index : self._index + count].copy()
        self._index += count
        return batch

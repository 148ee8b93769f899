"""Reusable scratch arrays for the Baum-Welch inner loops."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

import numpy as np

Shape = Tuple[int, ...]


class BufferPool:
    """Free lists of float64 arrays keyed by exact shape.

    Arrays are zero-filled when they are released, not when they are handed
    out: callers overwrite every cell they read.  Each free list holds at most
    ``max_per_shape`` arrays; anything beyond that is left to the garbage
    collector.

    A pool is not thread-safe and is meant to be owned by a single model.
    """

    def __init__(self, max_per_shape: int = 4) -> None:
        if max_per_shape < 0:
            raise ValueError("max_per_shape must be >= 0")
        self.max_per_shape = max_per_shape
        self._free: Dict[Shape, List[np.ndarray]] = {}

    def acquire(self, shape: int | Shape) -> np.ndarray:
        key = (shape,) if isinstance(shape, int) else tuple(shape)
        free = self._free.get(key)
        if free:
            return free.pop()
        return np.zeros(key)

    def release(self, buffer: np.ndarray) -> None:
        free = self._free.setdefault(buffer.shape, [])
        if len(free) >= self.max_per_shape:
            return
        buffer.fill(0.0)
        free.append(buffer)

    @contextmanager
    def scratch(self, *shapes: int | Shape) -> Iterator[List[np.ndarray]]:
        """Acquire one buffer per shape and release them all on exit."""
        buffers = [self.acquire(s) for s in shapes]
        try:
            yield buffers
        finally:
            for buf in buffers:
                self.release(buf)

    def pooled(self, shape: int | Shape) -> int:
        key = (shape,) if isinstance(shape, int) else tuple(shape)
        return len(self._free.get(key, ()))

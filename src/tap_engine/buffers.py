"""Fixed-capacity ring buffer of recent scalar samples."""

from __future__ import annotations

import numpy as np


class RingBuffer:
    """Always-full circular buffer, zero-filled at creation.

    Indexing is oldest-first: ``buf[0]`` is the oldest sample and
    ``buf[-1]`` the newest. ``push`` overwrites the oldest slot, so the
    length never changes.
    """

    def __init__(self, size: int, fill: float = 0.0):
        if size < 1:
            raise ValueError("size must be at least 1")
        self._data = np.full(size, fill, dtype=np.float64)
        self._fill = fill
        self._cursor = 0  # next slot to write == oldest sample

    def push(self, value: float):
        self._data[self._cursor] = value
        self._cursor = (self._cursor + 1) % len(self._data)

    def repeat_latest(self):
        """Advance one slot, carrying the newest sample forward."""
        self.push(self.latest)

    @property
    def latest(self) -> float:
        return float(self._data[self._cursor - 1])

    @property
    def size(self) -> int:
        return len(self._data)

    def values(self) -> np.ndarray:
        """Copy of the samples, oldest first."""
        return np.roll(self._data, -self._cursor)

    def argmax(self) -> int:
        """Oldest-first index of the largest sample (first one on ties)."""
        return int(np.argmax(self.values()))

    def reset(self):
        self._data.fill(self._fill)
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index: int) -> float:
        n = len(self._data)
        if not -n <= index < n:
            raise IndexError("ring buffer index out of range")
        return float(self._data[(self._cursor + index) % n])

    def __iter__(self):
        return iter(self.values().tolist())

    def __repr__(self) -> str:
        return f"RingBuffer({self.values().round(3).tolist()})"

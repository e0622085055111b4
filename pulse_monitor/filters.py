"""
Per-sample smoothing of the raw photoresistor stream.

Two stages run once per tick:

1. :class:`RingAverager` — fixed-capacity circular window of raw samples
   with a running sum, giving a moving average in O(1).
2. :class:`SignalSmoother` — blends that average with the previous output
   (70/30 by default) and keeps the previous value so the pipeline can take
   a first-difference derivative.
"""

from __future__ import annotations

import numpy as np


class RingAverager:
    """
    Moving average over the last ``capacity`` raw samples.

    The buffer is allocated once; each :meth:`push` overwrites the oldest
    slot and adjusts :attr:`total` by subtract-old/add-new, so ``total`` is
    always the exact sum of :attr:`buffer`.

    Parameters
    ----------
    capacity:
        Number of samples in the window (the firmware uses 10 or 20).
    """

    def __init__(self, capacity: int = 20) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buf = np.zeros(capacity, dtype=np.int64)
        self._index = 0
        self._total = 0

    def push(self, sample: int) -> float:
        """Overwrite the oldest slot with *sample* and return the new average."""
        sample = int(sample)
        self._total += sample - int(self._buf[self._index])
        self._buf[self._index] = sample
        self._index = (self._index + 1) % self.capacity
        return self.average

    def reset(self, fill: int = 0) -> None:
        """Set every slot to *fill* and restart at slot zero."""
        fill = int(fill)
        self._buf.fill(fill)
        self._index = 0
        self._total = fill * self.capacity

    @property
    def average(self) -> float:
        return self._total / self.capacity

    @property
    def total(self) -> int:
        return self._total

    @property
    def buffer(self) -> np.ndarray:
        """Copy of the window contents in slot order (not time order)."""
        return self._buf.copy()


class SignalSmoother:
    """
    First-order IIR blend of successive window averages.

    ``value = previous * (1 - weight) + average * weight``

    Parameters
    ----------
    weight:
        Weight given to each new average (default 0.3).
    """

    def __init__(self, weight: float = 0.3, initial: float = 0.0) -> None:
        self.weight = weight
        self.value = float(initial)
        self.previous = float(initial)

    def update(self, average: float) -> float:
        self.previous = self.value
        self.value = self.value * (1.0 - self.weight) + average * self.weight
        return self.value

    @property
    def derivative(self) -> float:
        """Change since the previous tick."""
        return self.value - self.previous

    def reset(self, value: float) -> None:
        self.value = float(value)
        self.previous = float(value)

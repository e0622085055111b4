"""
Beat history and BPM estimation.

:class:`BeatHistory` keeps the timestamps of the last few accepted beats in
a fixed circular buffer.  :class:`BPMEstimator` averages the plausible
intervals between adjacent entries, converts that to an instantaneous
rate, then blends it towards a resting baseline and clamps the result:

    instantaneous = 60000 / mean(valid intervals)
    smoothed      = base * (1 - alpha) + instantaneous * alpha

The double smoothing trades responsiveness for stability on a very noisy
optical signal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from pulse_monitor.clock import elapsed_ms

logger = logging.getLogger(__name__)


class BeatHistory:
    """
    Circular buffer of beat timestamps (ms); a zero slot means "unset".

    Parameters
    ----------
    capacity:
        Number of timestamps retained (default 10).
    """

    def __init__(self, capacity: int = 10) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._times = np.zeros(capacity, dtype=np.int64)
        self._index = 0

    def append(self, timestamp_ms: int) -> None:
        self._times[self._index] = timestamp_ms
        self._index = (self._index + 1) % self.capacity

    def recent(self) -> List[int]:
        """All slots, newest first (unset slots included as 0)."""
        return [
            int(self._times[(self._index - i - 1) % self.capacity])
            for i in range(self.capacity)
        ]

    def clear(self) -> None:
        self._times.fill(0)
        self._index = 0

    def __len__(self) -> int:
        return int(np.count_nonzero(self._times))


@dataclass
class BPMEstimate:
    instantaneous: float
    smoothed:      float

    @property
    def bpm(self) -> int:
        """Whole-number value for display and actuation."""
        return int(round(self.smoothed))


class BPMEstimator:
    """
    Turns a :class:`BeatHistory` into a clamped BPM estimate.

    Parameters
    ----------
    base_bpm:
        Resting rate used as the blend target and as the fallback when no
        valid interval is available.
    alpha:
        Weight of the instantaneous rate in the blend.
    min_interval_ms, max_interval_ms:
        Exclusive band of intervals accepted into the average.
    bpm_min, bpm_max:
        Output clamp.
    """

    def __init__(
        self,
        base_bpm: float = 60.0,
        alpha: float = 0.2,
        min_interval_ms: int = 333,
        max_interval_ms: int = 2000,
        bpm_min: float = 40.0,
        bpm_max: float = 200.0,
        clock_bits: int = 32,
    ) -> None:
        self.base_bpm = base_bpm
        self.alpha = alpha
        self.min_interval_ms = min_interval_ms
        self.max_interval_ms = max_interval_ms
        self.bpm_min = bpm_min
        self.bpm_max = bpm_max
        self.clock_bits = clock_bits
        self.estimate = BPMEstimate(instantaneous=base_bpm, smoothed=base_bpm)

    def valid_intervals(self, history: BeatHistory) -> List[int]:
        """Intervals between adjacent recorded beats that pass the band test."""
        times = history.recent()
        intervals = []
        for newer, older in zip(times, times[1:]):
            if newer == 0 or older == 0:
                continue
            interval = elapsed_ms(newer, older, self.clock_bits)
            if self.min_interval_ms < interval < self.max_interval_ms:
                intervals.append(interval)
        return intervals

    def recompute(self, history: BeatHistory) -> BPMEstimate:
        intervals = self.valid_intervals(history)
        if not intervals:
            self.estimate = BPMEstimate(instantaneous=self.base_bpm, smoothed=self.base_bpm)
            return self.estimate

        avg_interval = float(np.mean(intervals))
        instantaneous = 60000.0 / avg_interval
        smoothed = self.base_bpm * (1.0 - self.alpha) + instantaneous * self.alpha
        smoothed = float(np.clip(smoothed, self.bpm_min, self.bpm_max))
        self.estimate = BPMEstimate(instantaneous=instantaneous, smoothed=smoothed)
        logger.debug(
            "BPM from %d intervals (mean %.0f ms): inst=%.1f smoothed=%.1f",
            len(intervals), avg_interval, instantaneous, smoothed,
        )
        return self.estimate

    def reset(self) -> None:
        self.estimate = BPMEstimate(instantaneous=self.base_bpm, smoothed=self.base_bpm)

    @property
    def bpm(self) -> int:
        return self.estimate.bpm

"""
Derivative-gated beat detector.

A beat is a *rising* crossing of the adaptive threshold: the filtered
signal must be above the threshold **and** still increasing, so slow drift
that merely sits above a stale threshold does not fire.  Two timing gates
absorb jitter around the crossing point:

* a flat debounce window measured from the last accepted beat, and
* a physiological interval band (default 333 – 2000 ms, 30 – 180 BPM).

The detector disarms on a falling crossing (below threshold and
decreasing) with no timing gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pulse_monitor.clock import elapsed_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeatEvent:
    timestamp_ms: int
    interval_ms:  Optional[int]   # None for the first beat of a run
    value:        float
    threshold:    float


class BeatDetector:
    """
    Rising-edge detector with debounce and interval gating.

    Parameters
    ----------
    debounce_ms:
        Minimum time after an accepted beat before another rising edge is
        considered at all.
    min_interval_ms, max_interval_ms:
        Exclusive bounds on the interval since the previous beat.
    clock_bits:
        Width of the millisecond counter, for wrap-safe differences.

    Notes
    -----
    A rising edge whose interval exceeds ``max_interval_ms`` is not a beat
    but it does restart the run: the detector remembers it as the new
    reference point, so a pause in contact cannot lock detection out.
    Edges under ``min_interval_ms`` are dropped without touching state.
    """

    def __init__(
        self,
        debounce_ms: int = 500,
        min_interval_ms: int = 333,
        max_interval_ms: int = 2000,
        clock_bits: int = 32,
    ) -> None:
        self.debounce_ms = debounce_ms
        self.min_interval_ms = min_interval_ms
        self.max_interval_ms = max_interval_ms
        self.clock_bits = clock_bits

        self.pulse_state = False
        self.last_beat_ms: Optional[int] = None
        self.last_debounce_ms: Optional[int] = None

    def update(
        self,
        filtered: float,
        derivative: float,
        threshold: float,
        now_ms: int,
    ) -> Optional[BeatEvent]:
        """Evaluate one tick; return a :class:`BeatEvent` if a beat was accepted."""
        if not self.pulse_state:
            if filtered > threshold and derivative > 0 and self._debounced(now_ms):
                self.pulse_state = True
                return self._on_rising_edge(filtered, threshold, now_ms)
        elif filtered < threshold and derivative < 0:
            self.pulse_state = False
        return None

    def reset(self) -> None:
        """Disarm and forget beat timing (start of a new measurement)."""
        self.pulse_state = False
        self.last_beat_ms = None
        self.last_debounce_ms = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _debounced(self, now_ms: int) -> bool:
        if self.last_debounce_ms is None:
            return True
        return elapsed_ms(now_ms, self.last_debounce_ms, self.clock_bits) > self.debounce_ms

    def _on_rising_edge(
        self, filtered: float, threshold: float, now_ms: int,
    ) -> Optional[BeatEvent]:
        if self.last_beat_ms is None:
            interval = None
        else:
            interval = elapsed_ms(now_ms, self.last_beat_ms, self.clock_bits)
            if interval <= self.min_interval_ms:
                logger.debug("Edge at %d ms rejected: interval %d ms too short", now_ms, interval)
                return None
            if interval >= self.max_interval_ms:
                logger.debug("Edge at %d ms restarts run: interval %d ms too long", now_ms, interval)
                self.last_beat_ms = now_ms
                self.last_debounce_ms = now_ms
                return None

        self.last_beat_ms = now_ms
        self.last_debounce_ms = now_ms
        return BeatEvent(
            timestamp_ms=now_ms, interval_ms=interval, value=filtered, threshold=threshold,
        )

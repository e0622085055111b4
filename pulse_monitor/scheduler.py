"""
Measurement cycle state machine.

    CALIBRATING ──5 s──▶ MEASURING ──5 s──▶ WAITING ──3 s──▶ MEASURING ...

Transitions are pure wall-clock timeouts; there is no early exit and no
terminal state.  The scheduler only decides *which* phase is active and
what the two display rows say; the monitor acts on the transitions it
returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple

from pulse_monitor.clock import elapsed_ms

logger = logging.getLogger(__name__)


class CycleState(Enum):
    CALIBRATING = auto()
    MEASURING   = auto()
    WAITING     = auto()


@dataclass(frozen=True)
class Transition:
    source: CycleState
    target: CycleState
    at_ms:  int


class CycleScheduler:
    """
    Timer-driven controller for the calibrate / measure / wait cycle.

    Parameters
    ----------
    calibration_ms, measure_ms, wait_ms:
        Phase durations.  A phase ends on the first tick whose elapsed
        time strictly exceeds its duration.
    """

    def __init__(
        self,
        calibration_ms: int = 5000,
        measure_ms: int = 5000,
        wait_ms: int = 3000,
        clock_bits: int = 32,
    ) -> None:
        self.durations = {
            CycleState.CALIBRATING: calibration_ms,
            CycleState.MEASURING:   measure_ms,
            CycleState.WAITING:     wait_ms,
        }
        self.clock_bits = clock_bits
        self.state = CycleState.CALIBRATING
        self.started_ms = 0
        self.frozen_bpm: Optional[int] = None
        self.cycles = 0

    def start(self, now_ms: int) -> None:
        """Enter the initial CALIBRATING phase."""
        self.state = CycleState.CALIBRATING
        self.started_ms = now_ms
        self.frozen_bpm = None
        self.cycles = 0

    def elapsed(self, now_ms: int) -> int:
        return elapsed_ms(now_ms, self.started_ms, self.clock_bits)

    def remaining(self, now_ms: int) -> int:
        return max(self.durations[self.state] - self.elapsed(now_ms), 0)

    def tick(self, now_ms: int, bpm: int) -> Optional[Transition]:
        """Advance the timer; return the transition taken this tick, if any."""
        if self.elapsed(now_ms) <= self.durations[self.state]:
            return None

        source = self.state
        if source is CycleState.CALIBRATING:
            target = CycleState.MEASURING
        elif source is CycleState.MEASURING:
            target = CycleState.WAITING
            self.frozen_bpm = bpm
        else:
            target = CycleState.MEASURING
            self.cycles += 1

        self.state = target
        self.started_ms = now_ms
        logger.info("Cycle %s → %s at %d ms", source.name, target.name, now_ms)
        return Transition(source=source, target=target, at_ms=now_ms)

    def display_lines(self, now_ms: int, bpm: int) -> Tuple[str, str]:
        """The two text rows for the current phase."""
        if self.state is CycleState.CALIBRATING:
            return "Pulse Sensor", "Calibrating..."
        seconds = self.remaining(now_ms) // 1000 + 1
        if self.state is CycleState.MEASURING:
            return f"Measuring: {seconds}s", f"BPM: {bpm}"
        shown = self.frozen_bpm if self.frozen_bpm is not None else bpm
        return f"Pulse: {shown} bpm", f"Next in {seconds}s"

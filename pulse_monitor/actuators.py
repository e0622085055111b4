"""
Beat-synchronised feedback: LED bar and buzzer.

Runs every tick regardless of the cycle phase and depends only on the
current smoothed BPM and the time of the last accepted beat.  The buzzer
ticks once per *estimated* beat period instead of echoing detected beats,
so a noisy or briefly stale detection does not cut the rhythm off.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from pulse_monitor.clock import elapsed_ms
from pulse_monitor.interfaces import FeedbackSink

logger = logging.getLogger(__name__)


def led_count_for_bpm(
    bpm: float,
    led_count: int,
    bpm_range: Tuple[float, float] = (40.0, 140.0),
) -> int:
    """Linearly map *bpm* over *bpm_range* onto ``0 .. led_count`` LEDs."""
    lo, hi = bpm_range
    lit = int((bpm - lo) * led_count // (hi - lo))
    return max(0, min(led_count, lit))


@dataclass
class ActuatorState:
    buzzer_on:      bool = False
    last_toggle_ms: int = 0
    leds_lit:       int = 0


class ActuatorSync:
    """
    Drives the indicator bar and the buzzer from the BPM estimate.

    Parameters
    ----------
    sink:
        Output capability receiving ``set_indicator`` / ``set_tone`` calls.
    led_count:
        Number of indicators in the bar.
    on_ms:
        Audible part of each buzzer period.
    recent_beat_ms:
        The buzzer only runs while the last beat is younger than this.
    """

    def __init__(
        self,
        sink: FeedbackSink,
        led_count: int = 12,
        led_bpm_range: Tuple[float, float] = (40.0, 140.0),
        frequency_hz: int = 1000,
        on_ms: int = 50,
        recent_beat_ms: int = 3000,
        clock_bits: int = 32,
    ) -> None:
        self.sink = sink
        self.led_count = led_count
        self.led_bpm_range = led_bpm_range
        self.frequency_hz = frequency_hz
        self.on_ms = on_ms
        self.recent_beat_ms = recent_beat_ms
        self.clock_bits = clock_bits
        self.state = ActuatorState()
        self._leds = [False] * led_count

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, now_ms: int) -> None:
        """Silence everything and restart the buzzer timer."""
        for i in range(self.led_count):
            self.sink.set_indicator(i, False)
        self._leds = [False] * self.led_count
        self.sink.set_tone(False, self.frequency_hz)
        self.state = ActuatorState(buzzer_on=False, last_toggle_ms=now_ms, leds_lit=0)

    def period_ms(self, bpm: float) -> int:
        return int(60000 // max(bpm, 1.0))

    def phase_ms(self, bpm: float) -> Tuple[int, int]:
        """``(on, off)`` durations for one buzzer period at *bpm*."""
        period = self.period_ms(bpm)
        on = min(self.on_ms, period)
        return on, period - on

    def update(self, now_ms: int, bpm: float, last_beat_ms: Optional[int]) -> ActuatorState:
        self._update_leds(bpm)
        self._update_buzzer(now_ms, bpm, last_beat_ms)
        return self.state

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_leds(self, bpm: float) -> None:
        lit = led_count_for_bpm(bpm, self.led_count, self.led_bpm_range)
        for i in range(self.led_count):
            on = i < lit
            if self._leds[i] != on:
                self.sink.set_indicator(i, on)
                self._leds[i] = on
        self.state.leds_lit = lit

    def _update_buzzer(self, now_ms: int, bpm: float, last_beat_ms: Optional[int]) -> None:
        recent = (
            last_beat_ms is not None
            and elapsed_ms(now_ms, last_beat_ms, self.clock_bits) < self.recent_beat_ms
        )
        if not recent:
            if self.state.buzzer_on:
                self.sink.set_tone(False, self.frequency_hz)
                self.state.buzzer_on = False
            return

        on_ms, off_ms = self.phase_ms(bpm)
        hold = on_ms if self.state.buzzer_on else off_ms
        if elapsed_ms(now_ms, self.state.last_toggle_ms, self.clock_bits) > hold:
            self.state.buzzer_on = not self.state.buzzer_on
            self.state.last_toggle_ms = now_ms
            self.sink.set_tone(self.state.buzzer_on, self.frequency_hz)

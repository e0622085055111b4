"""
Pulse monitor: wires the pipeline together and runs it one tick at a time.

Per tick, strictly in this order::

    sample → filter → calibrate → detect → estimate → schedule → actuate

Detection only runs while the cycle is MEASURING; sampling, filtering and
envelope tracking run in every phase so the signal state is continuous
when a new measurement starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pulse_monitor.actuators import ActuatorSync
from pulse_monitor.calibrator import AdaptiveCalibrator
from pulse_monitor.clock import elapsed_ms
from pulse_monitor.config import PulseConfig
from pulse_monitor.detector import BeatDetector, BeatEvent
from pulse_monitor.estimator import BeatHistory, BPMEstimator
from pulse_monitor.filters import RingAverager, SignalSmoother
from pulse_monitor.interfaces import FeedbackSink, SampleSource
from pulse_monitor.scheduler import CycleScheduler, CycleState, Transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    """What happened during one tick (for callers, viewers and tests)."""
    now_ms:     int
    raw:        int
    filtered:   float
    derivative: float
    threshold:  float
    bpm:        int
    state:      CycleState
    beat:       Optional[BeatEvent] = None
    transition: Optional[Transition] = None


class PulseMonitor:
    """
    Owns all pipeline state for one sensor.

    Parameters
    ----------
    source:
        Provides ``read_sample()``.
    sink:
        Receives indicator, tone, display and log output.
    now_ms:
        Wrapping millisecond clock (``nowMillis``).
    sleep_ms:
        Blocking pause used during startup and between ticks.
    config:
        Tuning constants; defaults match the bench firmware.
    """

    def __init__(
        self,
        source: SampleSource,
        sink: FeedbackSink,
        now_ms: Callable[[], int],
        sleep_ms: Callable[[int], None],
        config: Optional[PulseConfig] = None,
    ) -> None:
        self.config = cfg = (config or PulseConfig()).validate()
        self.source = source
        self.sink = sink
        self._now = now_ms
        self._sleep = sleep_ms

        self.averager = RingAverager(cfg.window_size)
        self.smoother = SignalSmoother(cfg.smoothing_weight)
        self.calibrator = AdaptiveCalibrator(
            decay=cfg.envelope_decay,
            tracking_fraction=cfg.tracking_fraction,
            calibration_fraction=cfg.calibration_fraction,
            track_extremes=cfg.track_extremes,
        )
        self.detector = BeatDetector(
            debounce_ms=cfg.debounce_ms,
            min_interval_ms=cfg.min_interval_ms,
            max_interval_ms=cfg.max_interval_ms,
            clock_bits=cfg.clock_bits,
        )
        self.history = BeatHistory(cfg.history_size)
        self.estimator = BPMEstimator(
            base_bpm=cfg.base_bpm,
            alpha=cfg.alpha,
            min_interval_ms=cfg.min_interval_ms,
            max_interval_ms=cfg.max_interval_ms,
            bpm_min=cfg.bpm_min,
            bpm_max=cfg.bpm_max,
            clock_bits=cfg.clock_bits,
        )
        self.scheduler = CycleScheduler(
            calibration_ms=cfg.calibration_ms,
            measure_ms=cfg.measure_ms,
            wait_ms=cfg.wait_ms,
            clock_bits=cfg.clock_bits,
        )
        self.actuators = ActuatorSync(
            sink,
            led_count=cfg.led_count,
            led_bpm_range=cfg.led_bpm_range,
            frequency_hz=cfg.buzzer_freq_hz,
            on_ms=cfg.buzzer_on_ms,
            recent_beat_ms=cfg.recent_beat_ms,
            clock_bits=cfg.clock_bits,
        )

        self.last_beat_ms: Optional[int] = None
        self._rows = [""] * cfg.display_rows
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self) -> None:
        """
        Fixed power-on sequence: silence outputs, chirp, discard warm-up
        reads, prime the averaging window, then enter CALIBRATING.
        """
        cfg = self.config
        self.actuators.start(self._now())
        self._show("Pulse Sensor", "Calibrating...")

        self.sink.set_tone(True, cfg.buzzer_freq_hz)
        self._sleep(cfg.chirp_ms)
        self.sink.set_tone(False, cfg.buzzer_freq_hz)

        for _ in range(cfg.warmup_samples):
            self.source.read_sample()
            self._sleep(cfg.warmup_pause_ms)

        for _ in range(cfg.window_size):
            level = self.averager.push(self._read())
            self._sleep(cfg.prime_pause_ms)
        self.smoother.reset(level)
        self.calibrator.begin(level)

        self.scheduler.start(self._now())
        self._started = True
        logger.info("Primed at level %.1f; calibrating for %d ms", level, cfg.calibration_ms)

    def tick(self) -> TickResult:
        """Run one pass of the pipeline."""
        if not self._started:
            raise RuntimeError("PulseMonitor.startup() must run before tick()")

        now = self._now()
        state = self.scheduler.state

        raw = self._read()
        filtered = self.smoother.update(self.averager.push(raw))
        derivative = self.smoother.derivative

        envelope = self.calibrator.update(filtered)

        beat = None
        if state is CycleState.MEASURING:
            beat = self.detector.update(filtered, derivative, envelope.threshold, now)
            if beat is not None:
                self.last_beat_ms = beat.timestamp_ms
                self.history.append(beat.timestamp_ms)
                estimate = self.estimator.recompute(self.history)
                logger.info(
                    "Beat at %d ms (interval %s ms) → %d bpm",
                    now, beat.interval_ms, estimate.bpm,
                )

        transition = self.scheduler.tick(now, self.estimator.bpm)
        if transition is not None:
            self._on_transition(transition, filtered)

        bpm = self.estimator.bpm
        if self._showing_banner(now):
            self._show("Calibration done", "")
        else:
            self._show(*self.scheduler.display_lines(now, bpm))

        self.actuators.update(now, bpm, self.last_beat_ms)

        self.sink.log_line(
            f"Raw: {raw}\tFiltered: {filtered:.1f}\t"
            f"Threshold: {self.calibrator.threshold:.1f}\tBPM: {bpm}"
        )
        return TickResult(
            now_ms=now,
            raw=raw,
            filtered=filtered,
            derivative=derivative,
            threshold=self.calibrator.threshold,
            bpm=bpm,
            state=self.scheduler.state,
            beat=beat,
            transition=transition,
        )

    def run(
        self,
        max_ticks: Optional[int] = None,
        duration_ms: Optional[int] = None,
        on_tick: Optional[Callable[[TickResult], None]] = None,
    ) -> int:
        """
        Tick until *max_ticks* have run, *duration_ms* has passed, or the
        sink asks to stop.  *on_tick* sees every :class:`TickResult`.

        Returns the number of ticks executed.
        """
        if not self._started:
            self.startup()
        began = self._now()
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            result = self.tick()
            ticks += 1
            if on_tick is not None:
                on_tick(result)
            if not self.sink.refresh():
                logger.info("Sink requested stop after %d ticks.", ticks)
                break
            if duration_ms is not None and elapsed_ms(
                result.now_ms, began, self.config.clock_bits,
            ) >= duration_ms:
                break
            self._sleep(self.config.tick_ms)
        return ticks

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read(self) -> int:
        return max(0, min(self.config.sample_max, int(self.source.read_sample())))

    def _on_transition(self, transition: Transition, filtered: float) -> None:
        if transition.source is CycleState.CALIBRATING:
            self.calibrator.finish()
        elif transition.target is CycleState.WAITING:
            logger.info("Measurement complete: %d bpm", self.scheduler.frozen_bpm)
        else:
            # New measurement window: no stale beats, estimate or samples.
            self.history.clear()
            self.estimator.reset()
            self.averager.reset(round(filtered))
            self.smoother.reset(filtered)
            self.detector.reset()
            if self.config.reseed_envelope:
                self.calibrator.reseed(filtered)

    def _showing_banner(self, now: int) -> bool:
        # Only the first measurement follows calibration.
        sch = self.scheduler
        return (
            sch.state is CycleState.MEASURING
            and sch.cycles == 0
            and sch.elapsed(now) < self.config.calibration_banner_ms
        )

    def _show(self, *lines: str) -> None:
        width = self.config.display_cols
        for row, text in enumerate(lines[: len(self._rows)]):
            text = text[:width].ljust(width)
            if text != self._rows[row]:
                self.sink.write_display_line(row, text)
                self._rows[row] = text

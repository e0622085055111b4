"""
Unit tests for the cycle scheduler, actuator timing and the assembled
monitor.
Run with:  pytest tests/
"""

from __future__ import annotations

import re

import pytest

from pulse_monitor.actuators import ActuatorSync, led_count_for_bpm
from pulse_monitor.config import PulseConfig
from pulse_monitor.monitor import PulseMonitor
from pulse_monitor.scheduler import CycleScheduler, CycleState
from pulse_monitor.sources import SimulatedPhotoresistor

from conftest import ConstantSource, FakeClock, RecordingSink

WRAP = 1 << 32


# ---------------------------------------------------------------------------
# CycleScheduler
# ---------------------------------------------------------------------------

class TestCycleScheduler:

    def test_full_cycle_is_timeout_driven(self):
        sch = CycleScheduler()
        sch.start(0)
        assert sch.state is CycleState.CALIBRATING
        assert sch.tick(5000, bpm=60) is None

        t = sch.tick(5001, bpm=60)
        assert (t.source, t.target) == (CycleState.CALIBRATING, CycleState.MEASURING)

        assert sch.tick(10001, bpm=70) is None
        t = sch.tick(10002, bpm=70)
        assert t.target is CycleState.WAITING
        assert sch.frozen_bpm == 70

        assert sch.tick(13002, bpm=60) is None
        t = sch.tick(13003, bpm=60)
        assert (t.source, t.target) == (CycleState.WAITING, CycleState.MEASURING)
        assert sch.cycles == 1

    def test_never_returns_to_calibrating(self):
        sch = CycleScheduler(calibration_ms=10, measure_ms=10, wait_ms=10)
        sch.start(0)
        seen = set()
        for now in range(0, 1000, 3):
            sch.tick(now, bpm=60)
            seen.add(sch.state)
        assert sch.state is not CycleState.CALIBRATING
        assert seen == {CycleState.MEASURING, CycleState.WAITING}

    def test_timeout_across_clock_wrap(self):
        sch = CycleScheduler()
        sch.start(WRAP - 1000)
        assert sch.tick(4000, bpm=60) is None
        assert sch.tick(4001, bpm=60).target is CycleState.MEASURING

    def test_display_lines(self):
        sch = CycleScheduler()
        sch.start(0)
        assert sch.display_lines(100, 60) == ("Pulse Sensor", "Calibrating...")
        sch.tick(5001, bpm=60)
        assert sch.display_lines(5002, 63) == ("Measuring: 5s", "BPM: 63")
        sch.tick(10002, bpm=63)
        assert sch.display_lines(10003, 99) == ("Pulse: 63 bpm", "Next in 3s")


# ---------------------------------------------------------------------------
# ActuatorSync
# ---------------------------------------------------------------------------

class TestActuatorSync:

    @pytest.mark.parametrize(
        "bpm, expected",
        [(20, 0), (40, 0), (90, 6), (140, 12), (200, 12)],
    )
    def test_led_count_mapping(self, bpm, expected):
        assert led_count_for_bpm(bpm, 12, (40.0, 140.0)) == expected

    def test_off_duration_at_60_bpm(self, sink):
        act = ActuatorSync(sink)
        assert act.phase_ms(60) == (50, 950)

    @pytest.mark.parametrize("bpm", [40, 60, 75, 120, 200])
    def test_on_duration_fits_in_period(self, sink, bpm):
        act = ActuatorSync(sink)
        on, off = act.phase_ms(bpm)
        assert on <= act.period_ms(bpm)
        assert on + off == act.period_ms(bpm)

    def test_buzzer_rhythm_follows_bpm(self, sink):
        act = ActuatorSync(sink)
        act.start(0)
        sink.calls.clear()

        for now in (10, 950):
            act.update(now, 60, last_beat_ms=0)
        assert sink.tone_calls() == []

        act.update(951, 60, last_beat_ms=0)      # off for 951 > 950 ms
        assert sink.tone_calls() == [True]
        act.update(1001, 60, last_beat_ms=0)     # on for exactly 50 ms
        assert sink.tone_calls() == [True]
        act.update(1002, 60, last_beat_ms=0)
        assert sink.tone_calls() == [True, False]
        act.update(1953, 60, last_beat_ms=0)
        assert sink.tone_calls() == [True, False, True]

    def test_buzzer_silent_without_recent_beat(self, sink):
        act = ActuatorSync(sink)
        act.start(0)
        sink.calls.clear()
        for now in range(0, 5000, 10):
            act.update(now, 60, last_beat_ms=None)
        assert sink.tone_calls() == []

    def test_buzzer_forced_off_when_beats_stop(self, sink):
        act = ActuatorSync(sink)
        act.start(0)
        act.update(951, 60, last_beat_ms=900)
        assert act.state.buzzer_on
        act.update(3900, 60, last_beat_ms=900)
        assert not act.state.buzzer_on
        assert sink.tone_calls()[-1] is False

    def test_leds_written_only_on_change(self, sink):
        act = ActuatorSync(sink, led_count=12)
        act.start(0)
        sink.calls.clear()
        act.update(10, 90, last_beat_ms=None)
        first = [c for c in sink.calls if c[0] == "led"]
        assert first == [("led", i, True) for i in range(6)]
        sink.calls.clear()
        act.update(20, 90, last_beat_ms=None)
        assert [c for c in sink.calls if c[0] == "led"] == []
        assert act.state.leds_lit == 6


# ---------------------------------------------------------------------------
# PulseMonitor
# ---------------------------------------------------------------------------

def make_monitor(source=None, clock=None, sink=None, config=None):
    clock = clock or FakeClock()
    sink = sink or RecordingSink()
    source = source or ConstantSource(512)
    return PulseMonitor(source, sink, clock.now_ms, clock.sleep_ms, config), clock, sink


class TestPulseMonitor:

    def test_tick_before_startup_raises(self):
        monitor, _, _ = make_monitor()
        with pytest.raises(RuntimeError):
            monitor.tick()

    def test_startup_sequence(self):
        source = ConstantSource(512)
        monitor, clock, sink = make_monitor(source=source)
        monitor.startup()

        leds = [c for c in sink.calls[:12]]
        assert leds == [("led", i, False) for i in range(12)]
        assert sink.tone_calls() == [False, True, False]
        assert sink.rows[0].strip() == "Pulse Sensor"
        assert sink.rows[1].strip() == "Calibrating..."
        assert source.reads == 100 + 20
        # 200 ms chirp + 100 x 5 ms warm-up + 20 x 10 ms priming
        assert clock.now_ms() == 900
        assert monitor.scheduler.state is CycleState.CALIBRATING
        assert monitor.averager.average == pytest.approx(512.0)

    def test_display_rows_are_fixed_width(self):
        monitor, _, sink = make_monitor()
        monitor.startup()
        monitor.run(max_ticks=5)
        assert all(len(c[2]) == 16 for c in sink.calls if c[0] == "lcd")

    def test_flat_signal_never_beats(self):
        monitor, _, sink = make_monitor()
        beats = []
        monitor.startup()
        monitor.run(max_ticks=1200, on_tick=lambda r: beats.append(r.beat) if r.beat else None)
        assert beats == []
        assert monitor.estimator.bpm == 60
        assert sink.tone_calls() == [False, True, False]

    def test_end_to_end_cycle(self):
        clock = FakeClock()
        source = SimulatedPhotoresistor(
            clock.now_ms, bpm=75.0, noise=0.0, drift=0.0, seed=1,
        )
        monitor, clock, sink = make_monitor(source=source, clock=clock)
        monitor.startup()
        began = clock.now_ms()
        baseline = None

        transitions = []
        beats = []

        def on_tick(result):
            nonlocal baseline
            assert 40 <= result.bpm <= 200
            if result.state is not CycleState.CALIBRATING:
                env = monitor.calibrator.envelope
                assert env.valley <= env.threshold <= env.peak
            if result.beat is not None:
                beats.append(result.beat)
            if result.transition is not None:
                transitions.append(result.transition)
                if result.transition.source is CycleState.CALIBRATING:
                    baseline = monitor.calibrator.envelope.baseline
                if result.transition.source is CycleState.WAITING:
                    assert len(monitor.history) == 0
                    assert monitor.estimator.estimate.smoothed == 60.0
                    # Window refilled with the current level only.
                    level = round(result.filtered)
                    ring = monitor.averager
                    assert (ring.buffer == level).all()
                    assert ring.total == level * ring.capacity
                    assert monitor.detector.pulse_state is False
                    assert monitor.detector.last_beat_ms is None
                    # Envelope collapsed onto the signal, baseline kept.
                    env = monitor.calibrator.envelope
                    assert env.peak == env.valley == env.threshold == result.filtered
                    assert env.baseline == baseline

        monitor.run(duration_ms=14000, on_tick=on_tick)

        assert [(t.source, t.target) for t in transitions] == [
            (CycleState.CALIBRATING, CycleState.MEASURING),
            (CycleState.MEASURING, CycleState.WAITING),
            (CycleState.WAITING, CycleState.MEASURING),
        ]
        # Ticks land every 10 ms; each phase ends on the first tick past its length.
        assert transitions[0].at_ms == began + 5010
        assert transitions[1].at_ms == began + 10020
        assert transitions[2].at_ms == began + 13030

        first_measure = [b for b in beats if transitions[0].at_ms <= b.timestamp_ms < transitions[1].at_ms]
        assert len(first_measure) >= 4
        assert 62 <= monitor.scheduler.frozen_bpm <= 64
        assert sink.rows[0].startswith("Measuring:")

    def test_waiting_phase_freezes_display(self):
        clock = FakeClock()
        source = SimulatedPhotoresistor(clock.now_ms, bpm=75.0, noise=0.0, drift=0.0)
        monitor, clock, sink = make_monitor(source=source, clock=clock)
        monitor.startup()
        while monitor.scheduler.state is not CycleState.WAITING:
            monitor.tick()
            clock.advance(10)
        frozen = monitor.scheduler.frozen_bpm
        for _ in range(100):
            result = monitor.tick()
            clock.advance(10)
            assert result.beat is None
        assert sink.rows[0].strip() == f"Pulse: {frozen} bpm"

    def test_buzzer_runs_during_measurement(self):
        clock = FakeClock()
        source = SimulatedPhotoresistor(clock.now_ms, bpm=75.0, noise=0.0, drift=0.0)
        monitor, clock, sink = make_monitor(source=source, clock=clock)
        monitor.startup()
        monitor.run(duration_ms=10000)
        tones = sink.tone_calls()[3:]
        assert True in tones
        assert all(c[2] == 1000 for c in sink.calls if c[0] == "tone")


    def test_envelope_kept_across_pause_when_reseed_disabled(self):
        clock = FakeClock()
        source = SimulatedPhotoresistor(clock.now_ms, bpm=75.0, noise=0.0, drift=0.0)
        monitor, clock, _ = make_monitor(
            source=source, clock=clock, config=PulseConfig(reseed_envelope=False),
        )
        monitor.startup()
        while monitor.scheduler.cycles == 0:
            result = monitor.tick()
            clock.advance(10)
        env = monitor.calibrator.envelope
        assert result.transition.source is CycleState.WAITING
        assert env.peak > env.valley

    def test_calibration_banner_held_then_countdown(self):
        monitor, clock, sink = make_monitor()
        monitor.startup()
        while monitor.scheduler.state is CycleState.CALIBRATING:
            result = monitor.tick()
            clock.advance(10)
        switched = result.now_ms
        assert sink.rows[0].strip() == "Calibration done"

        while clock.now_ms() - switched < 1000:
            monitor.tick()
            assert sink.rows[0].strip() == "Calibration done"
            assert sink.rows[1].strip() == ""
            clock.advance(10)

        monitor.tick()
        assert sink.rows[0].startswith("Measuring:")
        assert sink.rows[1].strip() == "BPM: 60"

    def test_calibration_banner_can_be_disabled(self):
        monitor, clock, sink = make_monitor(config=PulseConfig(calibration_banner_ms=0))
        monitor.startup()
        while monitor.scheduler.state is CycleState.CALIBRATING:
            monitor.tick()
            clock.advance(10)
        assert sink.rows[0].startswith("Measuring:")
        assert all(c[2].strip() != "Calibration done" for c in sink.calls if c[0] == "lcd")

    def test_one_log_line_per_tick(self):
        monitor, _, sink = make_monitor(source=ConstantSource(512))
        monitor.startup()
        ticks = monitor.run(max_ticks=25)
        assert len(sink.logs) == ticks == 25
        assert sink.logs[-1] == "Raw: 512\tFiltered: 512.0\tThreshold: 512.0\tBPM: 60"
        pattern = re.compile(r"^Raw: \d+\tFiltered: \d+\.\d\tThreshold: \d+\.\d\tBPM: \d+$")
        assert all(pattern.match(line) for line in sink.logs)

    def test_rejects_invalid_config(self):
        with pytest.raises(ValueError):
            make_monitor(config=PulseConfig(alpha=0.0))

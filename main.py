#!/usr/bin/env python3
"""
Pulse Monitor – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --source {sim,camera}  Where samples come from (default: sim)
    --sim-bpm FLOAT        Heart rate of the simulated sensor (default: 72)
    --sim-noise FLOAT      Sensor noise of the simulated sensor (default: 2)
    --camera-index INT     OpenCV camera index (camera source, default: 0)
    --headless             No panel window; report through the log only
    --duration FLOAT       Stop after this many seconds (0 = run forever)
    --verbose              Per-tick diagnostic lines (DEBUG logging)

    Tuning overrides: --window, --tick, --debounce, --alpha, --decay,
    --base-bpm, --leds, --calibration, --measure, --wait

Keyboard shortcuts (when the panel window is open)
--------------------------------------------------
    q / ESC  – quit
"""

from __future__ import annotations

import argparse
import logging
import sys

from pulse_monitor.clock import MonotonicClock
from pulse_monitor.config import PulseConfig
from pulse_monitor.monitor import PulseMonitor, TickResult
from pulse_monitor.panel import ConsolePanel, VirtualPanel
from pulse_monitor.sources import CameraPhotoresistor, SimulatedPhotoresistor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pulse_monitor")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Photoresistor heartbeat monitor with LED / buzzer feedback",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", choices=("sim", "camera"), default="sim",
                        help="Sample source")
    parser.add_argument("--sim-bpm", type=float, default=72.0,
                        help="Heart rate of the simulated sensor")
    parser.add_argument("--sim-noise", type=float, default=2.0,
                        help="Noise std-dev of the simulated sensor (ADC counts)")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index (camera source)")
    parser.add_argument("--headless", action="store_true",
                        help="No panel window; log display changes only")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Run time in seconds (0 = until interrupted)")
    parser.add_argument("--verbose", action="store_true",
                        help="Log per-tick Raw/Filtered/Threshold/BPM lines")

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument("--window", type=int, default=None,
                        help="Moving-average window (samples)")
    tuning.add_argument("--tick", type=int, default=None,
                        help="Pause between ticks (ms)")
    tuning.add_argument("--debounce", type=int, default=None,
                        help="Debounce after an accepted beat (ms)")
    tuning.add_argument("--alpha", type=float, default=None,
                        help="Weight of the measured rate in the BPM blend")
    tuning.add_argument("--decay", type=float, default=None,
                        help="Envelope creep rate per tick")
    tuning.add_argument("--base-bpm", type=float, default=None,
                        help="Resting BPM used for blending and fallback")
    tuning.add_argument("--leds", type=int, default=None,
                        help="Number of indicator LEDs")
    tuning.add_argument("--calibration", type=int, default=None,
                        help="Calibration phase length (ms)")
    tuning.add_argument("--measure", type=int, default=None,
                        help="Measurement phase length (ms)")
    tuning.add_argument("--wait", type=int, default=None,
                        help="Pause between measurements (ms)")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PulseConfig:
    return PulseConfig().with_overrides(
        window_size=args.window,
        tick_ms=args.tick,
        debounce_ms=args.debounce,
        alpha=args.alpha,
        envelope_decay=args.decay,
        base_bpm=args.base_bpm,
        led_count=args.leds,
        calibration_ms=args.calibration,
        measure_ms=args.measure,
        wait_ms=args.wait,
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    clock = MonotonicClock(bits=config.clock_bits)

    if args.source == "camera":
        source = CameraPhotoresistor(camera_index=args.camera_index,
                                     sample_max=config.sample_max)
    else:
        source = SimulatedPhotoresistor(
            clock.now_ms,
            bpm=args.sim_bpm,
            noise=args.sim_noise,
            sample_rate_hz=1000.0 / max(config.tick_ms, 1),
            sample_max=config.sample_max,
        )

    panel = ConsolePanel(config.led_count) if args.headless else VirtualPanel(config.led_count)

    def on_tick(result: TickResult) -> None:
        if isinstance(panel, VirtualPanel):
            panel.push_trace(result.filtered, result.threshold)

    duration_ms = int(args.duration * 1000) if args.duration > 0 else None

    logger.info("Starting pulse monitor (%s source).  Press Ctrl+C to quit.", args.source)
    try:
        with source:
            monitor = PulseMonitor(source, panel, clock.now_ms, clock.sleep_ms, config)
            monitor.startup()
            ticks = monitor.run(duration_ms=duration_ms, on_tick=on_tick)
            logger.info("Stopped after %d ticks; last reading %d bpm.", ticks, monitor.estimator.bpm)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        panel.set_tone(False, config.buzzer_freq_hz)
        panel.close()

    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())

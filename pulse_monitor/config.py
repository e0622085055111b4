"""
Tuning constants for the pulse monitor.

Every value here is an empirical setting carried over from the bench
firmware.  They are grouped in a single dataclass so the CLI can override
any of them and tests can build small, fast configurations.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class PulseConfig:
    # --- Sampling / smoothing ------------------------------------------------
    window_size:        int   = 20      # moving-average ring capacity
    smoothing_weight:   float = 0.3     # weight of the new average (70/30 blend)
    sample_max:         int   = 1023    # 10-bit ADC ceiling

    # --- Adaptive envelope ---------------------------------------------------
    envelope_decay:       float = 0.001
    tracking_fraction:    float = 0.3   # threshold = valley + span * fraction
    calibration_fraction: float = 0.25  # threshold = baseline - span * fraction
    track_extremes:       bool  = True  # widen envelope before creeping
    reseed_envelope:      bool  = True  # collapse envelope when a measurement starts

    # --- Beat detection ------------------------------------------------------
    debounce_ms:        int = 500
    min_interval_ms:    int = 333       # 180 bpm
    max_interval_ms:    int = 2000      # 30 bpm

    # --- BPM estimation ------------------------------------------------------
    history_size:       int   = 10
    base_bpm:           float = 60.0
    alpha:              float = 0.2
    bpm_min:            float = 40.0
    bpm_max:            float = 200.0

    # --- Cycle timing --------------------------------------------------------
    calibration_ms:     int = 5000
    measure_ms:         int = 5000
    wait_ms:            int = 3000

    # --- Actuators -----------------------------------------------------------
    led_count:          int   = 12
    led_bpm_range:      Tuple[float, float] = (40.0, 140.0)
    buzzer_freq_hz:     int   = 1000
    buzzer_on_ms:       int   = 50
    recent_beat_ms:     int   = 3000

    # --- Loop / startup ------------------------------------------------------
    tick_ms:            int = 10
    warmup_samples:     int = 100
    warmup_pause_ms:    int = 5
    prime_pause_ms:     int = 10
    chirp_ms:           int = 200

    # --- Display / clock -----------------------------------------------------
    display_cols:       int = 16
    display_rows:       int = 2
    calibration_banner_ms: int = 1000
    clock_bits:         int = 32

    def validate(self) -> "PulseConfig":
        """Raise :class:`ValueError` if any setting is unusable; return self."""
        positive = (
            "window_size", "history_size", "calibration_ms", "measure_ms",
            "wait_ms", "buzzer_on_ms", "display_cols", "display_rows",
            "clock_bits", "sample_max",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        for name in ("smoothing_weight", "alpha"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must lie in (0, 1], got {value}")
        if not 0.0 <= self.tracking_fraction <= 1.0:
            raise ValueError(
                f"tracking_fraction must lie in [0, 1], got {self.tracking_fraction}"
            )
        # Offset is taken from the midpoint, so half the span keeps it above valley.
        if not 0.0 <= self.calibration_fraction <= 0.5:
            raise ValueError(
                f"calibration_fraction must lie in [0, 0.5], got {self.calibration_fraction}"
            )
        if not 0.0 <= self.envelope_decay < 1.0:
            raise ValueError(f"envelope_decay must lie in [0, 1), got {self.envelope_decay}")

        if not 0 < self.min_interval_ms < self.max_interval_ms:
            raise ValueError(
                f"interval band ({self.min_interval_ms}, {self.max_interval_ms}) is inverted"
            )
        if not 0 < self.bpm_min < self.bpm_max:
            raise ValueError(f"bpm clamp [{self.bpm_min}, {self.bpm_max}] is inverted")
        if not self.bpm_min <= self.base_bpm <= self.bpm_max:
            raise ValueError(f"base_bpm {self.base_bpm} lies outside the clamp range")
        lo, hi = self.led_bpm_range
        if not lo < hi:
            raise ValueError(f"led_bpm_range {self.led_bpm_range} is inverted")
        if min(self.led_count, self.debounce_ms, self.tick_ms, self.calibration_banner_ms) < 0:
            raise ValueError(
                "led_count, debounce_ms, tick_ms and calibration_banner_ms must not be negative"
            )
        return self

    def with_overrides(self, **overrides) -> "PulseConfig":
        """Return a validated copy with the non-``None`` *overrides* applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes).validate()

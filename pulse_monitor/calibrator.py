"""
Adaptive baseline / threshold calibration.

The calibrator follows the peak/valley envelope of the filtered signal in
two modes:

Calibration
    While the cycle is in its calibration phase, ``peak`` and ``valley``
    are plain running extrema.  :meth:`AdaptiveCalibrator.finish` turns them
    into a baseline (midpoint) and a first threshold.

Tracking
    Every tick afterwards the envelope creeps towards the current value at
    a slow exponential rate, so ambient-light drift and changing sensor
    contact are followed without letting a single beat collapse the band.
    The threshold sits a fixed fraction of the way up from the valley.

A flat signal (``peak == valley``) leaves the threshold equal to the
signal itself; the detector then never fires, which is the intended
degraded state rather than an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CalibrationEnvelope:
    baseline:  float = 0.0
    peak:      float = 0.0
    valley:    float = 0.0
    threshold: float = 0.0

    @property
    def span(self) -> float:
        return self.peak - self.valley


class AdaptiveCalibrator:
    """
    Tracks :class:`CalibrationEnvelope` for the filtered signal.

    Parameters
    ----------
    decay:
        Per-tick creep rate of peak and valley during tracking (≈ 0.001).
    tracking_fraction:
        Threshold position inside the envelope during tracking (0.3).
    calibration_fraction:
        Threshold offset below the baseline, as a fraction of the span,
        when calibration completes (0.25, i.e. a quarter of the span).
    track_extremes:
        Widen the envelope to include each new value before creeping.
    """

    def __init__(
        self,
        decay: float = 0.001,
        tracking_fraction: float = 0.3,
        calibration_fraction: float = 0.25,
        track_extremes: bool = True,
    ) -> None:
        self.decay = decay
        self.tracking_fraction = tracking_fraction
        self.calibration_fraction = calibration_fraction
        self.track_extremes = track_extremes

        self.envelope = CalibrationEnvelope()
        self.calibrating = True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def begin(self, value: float) -> None:
        """Start a calibration phase seeded with the primed signal level."""
        value = float(value)
        self.envelope = CalibrationEnvelope(
            baseline=value, peak=value, valley=value, threshold=value,
        )
        self.calibrating = True

    def update(self, filtered: float) -> CalibrationEnvelope:
        """Fold one filtered value into the envelope and return it."""
        env = self.envelope
        if self.calibrating:
            env.peak = max(env.peak, filtered)
            env.valley = min(env.valley, filtered)
            return env

        if self.track_extremes:
            env.peak = max(env.peak, filtered)
            env.valley = min(env.valley, filtered)
        env.valley += (filtered - env.valley) * self.decay
        env.peak -= (env.peak - filtered) * self.decay
        env.threshold = env.valley + (env.peak - env.valley) * self.tracking_fraction
        return env

    def finish(self) -> CalibrationEnvelope:
        """End calibration: derive baseline and threshold, switch to tracking."""
        env = self.envelope
        env.baseline = (env.peak + env.valley) / 2.0
        env.threshold = env.baseline - env.span * self.calibration_fraction
        self.calibrating = False
        if env.span == 0:
            logger.warning(
                "Calibration saw no variation (level %.1f); detection stays idle "
                "until the envelope opens up.", env.baseline,
            )
        else:
            logger.info(
                "Calibration done – baseline=%.1f peak=%.1f valley=%.1f threshold=%.1f",
                env.baseline, env.peak, env.valley, env.threshold,
            )
        return env

    def reseed(self, value: float) -> CalibrationEnvelope:
        """
        Collapse peak, valley and threshold onto *value*, keeping the baseline.

        Used when a new measurement window starts, so extremes seen before the
        pause do not hold the threshold away from the current signal.  With
        ``track_extremes`` the envelope reopens within one pulse.
        """
        value = float(value)
        env = self.envelope
        env.peak = env.valley = env.threshold = value
        logger.debug("Envelope reseeded at %.1f (baseline %.1f)", value, env.baseline)
        return env

    @property
    def threshold(self) -> float:
        return self.envelope.threshold

"""
Sample sources standing in for the photoresistor ADC.

``SimulatedPhotoresistor``
    Synthetic perfusion waveform with sensor noise and a slow ambient-light
    drift; useful on a desk with no hardware attached.

``CameraPhotoresistor``
    Uses a Raspberry Pi camera (picamera2) or any OpenCV webcam as the
    light sensor: with a finger over the lens, mean frame luminance rises
    and falls with tissue perfusion exactly like an LDR reading.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional, Tuple

import cv2
import numpy as np
from scipy.signal import butter, sosfilt

from pulse_monitor.interfaces import SampleSource

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False

# V4L2 backend maps 0.25 to "manual exposure" (0.75 is aperture priority).
_V4L2_MANUAL_EXPOSURE = 0.25


class SimulatedPhotoresistor(SampleSource):
    """
    Synthetic LDR reading driven by a millisecond clock.

    Parameters
    ----------
    now_ms:
        Clock used to place each sample on the waveform.
    bpm:
        Simulated heart rate.
    level:
        Mean ADC reading (ambient light through tissue).
    amplitude:
        Peak-to-trough size of the pulsatile component, in ADC counts.
    noise:
        Standard deviation of white sensor noise.
    drift:
        Standard deviation of the slow ambient drift.
    sample_rate_hz:
        Nominal read rate, used to design the drift filter.
    seed:
        Seed for the random generator (reproducible runs).
    """

    def __init__(
        self,
        now_ms: Callable[[], int],
        bpm: float = 72.0,
        level: float = 600.0,
        amplitude: float = 30.0,
        noise: float = 2.0,
        drift: float = 20.0,
        sample_rate_hz: float = 100.0,
        drift_cutoff_hz: float = 0.05,
        sample_max: int = 1023,
        seed: Optional[int] = None,
    ) -> None:
        self._now = now_ms
        self.bpm = bpm
        self.level = level
        self.amplitude = amplitude
        self.noise = noise
        self.drift = drift
        self.sample_max = sample_max
        self._rng = np.random.default_rng(seed)

        # Low-passed white noise → slow wander; streamed one sample at a time.
        nyq = sample_rate_hz / 2.0
        wn = max(1e-4, min(drift_cutoff_hz / nyq, 0.999))
        self._sos = butter(2, wn, btype="lowpass", output="sos")
        self._zi = np.zeros((self._sos.shape[0], 2))
        # Unit-variance input shrinks to ~sqrt(2*fc/fs) after filtering.
        self._drift_gain = drift / math.sqrt(max(wn, 1e-6))

    def read_sample(self) -> int:
        t_s = self._now() / 1000.0
        phase = (t_s * self.bpm / 60.0) % 1.0
        pulse = self._waveform(phase)

        white = self._rng.normal(0.0, 1.0, 1)
        wander, self._zi = sosfilt(self._sos, white, zi=self._zi)

        value = (
            self.level
            + self.amplitude * (pulse - 0.5)
            + self._drift_gain * float(wander[0])
            + self._rng.normal(0.0, self.noise)
        )
        return int(np.clip(round(value), 0, self.sample_max))

    @staticmethod
    def _waveform(phase: float) -> float:
        """Normalised perfusion pulse (0 – 1): sharp upstroke, slow decay."""
        if phase < 0.15:
            return math.sin(0.5 * math.pi * phase / 0.15)
        decay = math.exp(-(phase - 0.15) * 4.0)
        notch = 0.12 * math.exp(-((phase - 0.45) / 0.05) ** 2)
        return min(1.0, decay + notch)


class CameraPhotoresistor(SampleSource):
    """
    Camera used as a light sensor.

    Parameters
    ----------
    resolution:
        (width, height) requested from the camera.  Only the mean
        brightness is used, so the smallest stream the driver offers is best.
    fps:
        Target frame rate.
    camera_index:
        OpenCV camera index when picamera2 is unavailable.
    sample_max:
        ADC ceiling the 0 – 255 luminance is scaled to.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (64, 48),
        fps: int = 30,
        camera_index: int = 0,
        sample_max: int = 1023,
    ) -> None:
        self.resolution = resolution
        self.fps = fps
        self.camera_index = camera_index
        self.sample_max = sample_max

        self._cam: "Picamera2 | cv2.VideoCapture | None" = None
        self._use_picamera2 = _PICAMERA2_AVAILABLE
        self._last = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        if self._use_picamera2:
            self._open_picamera2()
        else:
            logger.warning("picamera2 not found – falling back to OpenCV VideoCapture.")
            self._open_opencv()
        logger.info(
            "Camera sensor opened – backend=%s resolution=%s fps=%d",
            "picamera2" if self._use_picamera2 else "opencv",
            self.resolution,
            self.fps,
        )

    def close(self) -> None:
        cam, self._cam = self._cam, None
        if cam is None:
            return
        if isinstance(cam, cv2.VideoCapture):
            cam.release()
        else:
            cam.stop()
            cam.close()
        logger.info("Light sensor released (last reading %d).", self._last)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def read_sample(self) -> int:
        """
        Mean luminance of the next frame scaled to ``0 .. sample_max``.

        A dropped frame repeats the previous reading so the tick loop never
        stalls on the camera.
        """
        if self._cam is None:
            raise RuntimeError("Camera is not open.  Call open() first.")

        frame = self._capture()
        if frame is None:
            return self._last
        self._last = self.luminance_to_sample(frame, self.sample_max)
        return self._last

    @staticmethod
    def luminance_to_sample(frame: np.ndarray, sample_max: int = 1023) -> int:
        """Scale the mean grey level of a BGR (or grey) frame to the ADC range."""
        if frame.ndim == 3:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        mean = float(np.mean(frame))
        return int(round(mean * sample_max / 255.0))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _open_picamera2(self) -> None:
        cam = Picamera2()
        w, h = self.resolution
        config = cam.create_video_configuration(
            main={"size": (w, h), "format": "RGB888"},
            buffer_count=4,
        )
        cam.configure(config)
        frame_duration = int(1_000_000 / self.fps)   # microseconds
        try:
            # Fixed exposure; auto-exposure would flatten the pulse.
            cam.set_controls({
                "FrameDurationLimits": (frame_duration, frame_duration),
                "AeEnable": False,
            })
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Could not set camera controls: %s", exc)
        cam.start()
        self._cam = cam

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            raise RuntimeError(f"No light sensor at camera index {self.camera_index}")
        # Only the frame mean matters: ask for a tiny, fixed-exposure stream.
        # Drivers may ignore any of these; the sensor still works, just noisier.
        w, h = self.resolution
        wanted = {
            "frame width":   (cv2.CAP_PROP_FRAME_WIDTH, w),
            "frame height":  (cv2.CAP_PROP_FRAME_HEIGHT, h),
            "frame rate":    (cv2.CAP_PROP_FPS, self.fps),
            "auto exposure": (cv2.CAP_PROP_AUTO_EXPOSURE, _V4L2_MANUAL_EXPOSURE),
        }
        ignored = [name for name, (prop, value) in wanted.items() if not cap.set(prop, value)]
        if ignored:
            logger.warning("Camera ignored requested %s.", ", ".join(ignored))
        self._cam = cap

    def _capture(self) -> np.ndarray | None:
        if self._use_picamera2:
            frame = self._cam.capture_array("main")
            if frame is None:
                logger.warning("capture_array returned None.")
                return None
            if frame.ndim == 3 and frame.shape[2] == 4:
                frame = frame[:, :, :3]
            return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

        ok, frame = self._cam.read()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return None
        return frame

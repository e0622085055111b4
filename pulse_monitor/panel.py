"""
Feedback sinks: where LEDs, buzzer, display and diagnostics end up.

``VirtualPanel``
    OpenCV window mimicking the bench hardware: a 16x2 character LCD, a row
    of indicator LEDs, a buzzer lamp and a scrolling trace of the filtered
    signal against its threshold.

``ConsolePanel``
    Headless sink that reports display and tone changes through logging.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import cv2
import numpy as np

from pulse_monitor.interfaces import FeedbackSink

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN   = (0, 220,  80)
_RED     = (0,  50, 220)
_YELLOW  = (0, 210, 210)
_WHITE   = (255, 255, 255)
_DARK    = (30, 30, 30)
_LCD_BG  = (40, 110, 40)
_LCD_FG  = (20, 30, 20)
_LED_OFF = (40, 40, 70)


class ConsolePanel(FeedbackSink):
    """Logs display rows and tone toggles; keeps indicator state in memory."""

    def __init__(self, led_count: int = 12) -> None:
        self.leds: List[bool] = [False] * led_count
        self.tone_on = False
        self.rows = ["", ""]

    def set_indicator(self, index: int, on: bool) -> None:
        if 0 <= index < len(self.leds):
            self.leds[index] = on

    def set_tone(self, on: bool, frequency_hz: int) -> None:
        self.tone_on = on

    def write_display_line(self, row: int, text: str) -> None:
        if 0 <= row < len(self.rows):
            self.rows[row] = text
            logger.info("LCD[%d] %s | LEDs %2d", row, text, sum(self.leds))

    def log_line(self, text: str) -> None:
        logger.debug(text)


class VirtualPanel(ConsolePanel):
    """
    On-screen stand-in for the LCD, LED bar and buzzer.

    Parameters
    ----------
    led_count:
        Number of LEDs drawn in the bar.
    resolution:
        (width, height) of the window.
    trace_height:
        Pixel height of the waveform strip at the bottom.
    window_name:
        Title of the OpenCV window.
    """

    def __init__(
        self,
        led_count: int = 12,
        resolution: Tuple[int, int] = (640, 320),
        trace_height: int = 140,
        window_name: str = "Pulse Monitor",
    ) -> None:
        super().__init__(led_count)
        self.w, self.h = resolution
        self.trace_height = trace_height
        self.window_name = window_name

        # Scroll buffers for the signal trace
        self._signal = np.full(self.w, np.nan, dtype=np.float64)
        self._threshold = np.full(self.w, np.nan, dtype=np.float64)
        self._window_open = False

    # ------------------------------------------------------------------
    # FeedbackSink
    # ------------------------------------------------------------------

    def write_display_line(self, row: int, text: str) -> None:
        if 0 <= row < len(self.rows):
            self.rows[row] = text

    def refresh(self) -> bool:
        if not self._window_open:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, self.w, self.h)
            self._window_open = True
        cv2.imshow(self.window_name, self.render())
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), 27):          # q or ESC
            logger.info("Quit requested by user.")
            return False
        return True

    def close(self) -> None:
        if self._window_open:
            cv2.destroyWindow(self.window_name)
            self._window_open = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def push_trace(self, filtered: float, threshold: float) -> None:
        """Append one tick of filtered signal and threshold to the trace."""
        self._signal = np.roll(self._signal, -1)
        self._signal[-1] = filtered
        self._threshold = np.roll(self._threshold, -1)
        self._threshold[-1] = threshold

    def render(self) -> np.ndarray:
        """Draw the whole panel into a fresh BGR image and return it."""
        canvas = np.zeros((self.h, self.w, 3), dtype=np.uint8)
        self._draw_lcd(canvas)
        self._draw_leds(canvas)
        self._draw_buzzer(canvas)
        self._draw_trace(canvas)
        return canvas

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_lcd(self, canvas: np.ndarray) -> None:
        x0, y0, x1, y1 = 16, 12, self.w - 90, 92
        cv2.rectangle(canvas, (x0, y0), (x1, y1), _LCD_BG, -1)
        for row, text in enumerate(self.rows):
            cv2.putText(
                canvas, text,
                (x0 + 10, y0 + 32 + row * 34),
                cv2.FONT_HERSHEY_SIMPLEX, 0.85, _LCD_FG, 2, cv2.LINE_AA,
            )

    def _draw_leds(self, canvas: np.ndarray) -> None:
        n = len(self.leds)
        if n == 0:
            return
        y = 120
        spacing = (self.w - 32) / n
        radius = max(3, int(spacing * 0.3))
        for i, on in enumerate(self.leds):
            cx = int(16 + spacing * (i + 0.5))
            colour = _RED if on else _LED_OFF
            cv2.circle(canvas, (cx, y), radius, colour, -1, cv2.LINE_AA)

    def _draw_buzzer(self, canvas: np.ndarray) -> None:
        centre = (self.w - 45, 52)
        cv2.circle(canvas, centre, 22, _YELLOW if self.tone_on else _DARK, -1, cv2.LINE_AA)
        cv2.putText(
            canvas, "BUZ",
            (centre[0] - 16, centre[1] + 5), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_trace(self, canvas: np.ndarray) -> None:
        """Filtered signal (green) and threshold (yellow) in a dark strip."""
        panel_top = self.h - self.trace_height
        cv2.rectangle(canvas, (0, panel_top), (self.w, self.h), _DARK, -1)

        valid = ~np.isnan(self._signal)
        if valid.sum() < 2:
            return
        both = np.concatenate([self._signal[valid], self._threshold[valid]])
        mn, mx = float(both.min()), float(both.max())
        rng = mx - mn if mx != mn else 1.0

        margin = 6
        plot_h = self.trace_height - 2 * margin
        xs = np.nonzero(valid)[0]
        for series, colour in ((self._signal, _GREEN), (self._threshold, _YELLOW)):
            norm = (series[valid] - mn) / rng
            ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(int)
            pts = np.column_stack([xs, ys]).astype(np.int32)
            cv2.polylines(canvas, [pts[:, None, :]], False, colour, 1, cv2.LINE_AA)

        cv2.putText(
            canvas, "LDR",
            (4, panel_top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

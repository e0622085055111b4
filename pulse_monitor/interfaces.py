"""
Capabilities the pulse monitor is given rather than owns.

Hardware access (ADC, LEDs, tone generator, character display, serial log)
lives behind these narrow interfaces so the detection core can be driven
by real hardware, a camera, a simulator or a test double alike.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SampleSource(ABC):
    """One bounded integer reading per call (``readSample``)."""

    @abstractmethod
    def read_sample(self) -> int:
        ...

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "SampleSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()


class FeedbackSink(ABC):
    """Indicators, tone, two-row text display and diagnostic log."""

    @abstractmethod
    def set_indicator(self, index: int, on: bool) -> None:
        ...

    @abstractmethod
    def set_tone(self, on: bool, frequency_hz: int) -> None:
        ...

    @abstractmethod
    def write_display_line(self, row: int, text: str) -> None:
        ...

    def log_line(self, text: str) -> None:
        """Best-effort diagnostics; the default discards them."""

    def refresh(self) -> bool:
        """
        Called once per tick after all outputs are written.

        Returns *False* when the sink asks the loop to stop (e.g. the user
        closed a window).
        """
        return True

    def close(self) -> None:
        pass

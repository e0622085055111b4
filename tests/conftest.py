"""
Shared test doubles: a manual millisecond clock and recording sinks.
"""

from __future__ import annotations

from typing import List, Tuple

import pytest

from pulse_monitor.interfaces import FeedbackSink, SampleSource


class FakeClock:
    """Wrapping millisecond clock that only moves when told to (or slept on)."""

    def __init__(self, start: int = 0, bits: int = 32) -> None:
        self.mask = (1 << bits) - 1
        self.t = start & self.mask

    def now_ms(self) -> int:
        return self.t

    def sleep_ms(self, ms: int) -> None:
        self.advance(ms)

    def advance(self, ms: int) -> None:
        self.t = (self.t + ms) & self.mask


class RecordingSink(FeedbackSink):
    """Captures every output call in order."""

    def __init__(self) -> None:
        self.calls: List[Tuple] = []
        self.rows = {}
        self.tone_on = False
        self.logs: List[str] = []

    def set_indicator(self, index: int, on: bool) -> None:
        self.calls.append(("led", index, on))

    def set_tone(self, on: bool, frequency_hz: int) -> None:
        self.tone_on = on
        self.calls.append(("tone", on, frequency_hz))

    def write_display_line(self, row: int, text: str) -> None:
        self.rows[row] = text
        self.calls.append(("lcd", row, text))

    def log_line(self, text: str) -> None:
        self.logs.append(text)

    def tone_calls(self) -> List[bool]:
        return [c[1] for c in self.calls if c[0] == "tone"]


class ConstantSource(SampleSource):
    def __init__(self, value: int = 512) -> None:
        self.value = value
        self.reads = 0

    def read_sample(self) -> int:
        self.reads += 1
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()

"""
Millisecond clock with fixed-width wraparound.

Microcontroller tick counters overflow (a 32-bit millisecond counter wraps
after ~49.7 days).  All durations in this package are therefore computed
with :func:`elapsed_ms`, which performs unsigned subtraction modulo the
counter width and stays correct across the wrap.
"""

from __future__ import annotations

import time


def elapsed_ms(now: int, then: int, bits: int = 32) -> int:
    """Return ``now - then`` as an unsigned *bits*-wide difference."""
    return (now - then) & ((1 << bits) - 1)


class MonotonicClock:
    """
    ``nowMillis()`` equivalent backed by :func:`time.monotonic_ns`.

    Parameters
    ----------
    bits:
        Counter width.  Readings wrap to zero after ``2**bits - 1``.
    offset_ms:
        Added to every reading before wrapping; lets a simulation start
        close to the overflow point.
    """

    def __init__(self, bits: int = 32, offset_ms: int = 0) -> None:
        self.bits = bits
        self._mask = (1 << bits) - 1
        self._origin_ns = time.monotonic_ns()
        self._offset_ms = offset_ms

    def now_ms(self) -> int:
        ms = (time.monotonic_ns() - self._origin_ns) // 1_000_000
        return (ms + self._offset_ms) & self._mask

    def sleep_ms(self, ms: int) -> None:
        """Bounded pause between ticks."""
        if ms > 0:
            time.sleep(ms / 1000.0)

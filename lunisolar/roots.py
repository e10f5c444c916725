"""Bisection search for zero crossings of a signal sampled at instants."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from .config import MAX_ROOT_ITERATIONS
from .errors import NoBracketError
from .timeutil import format_utc, midpoint

Signal = Callable[[datetime], float]


def bisect_root(
    func: Signal,
    lo: datetime,
    hi: datetime,
    iterations: int = 40,
) -> datetime:
    """Refine the zero crossing of *func* between *lo* and *hi*.

    The search runs a fixed number of halvings rather than stopping on a
    tolerance in ``func``; the signals here are wrapped angles whose
    magnitude says little about the distance to the root.

    Raises
    ------
    NoBracketError
        If ``func(lo)`` and ``func(hi)`` share a sign and neither is zero.
    """

    if not lo < hi:
        raise ValueError(
            f"bracket must be ordered: {format_utc(lo)} !< {format_utc(hi)}"
        )
    if not 1 <= iterations <= MAX_ROOT_ITERATIONS:
        raise ValueError(f"iterations must be within 1..{MAX_ROOT_ITERATIONS}")

    value_lo = func(lo)
    if value_lo == 0:
        return lo
    value_hi = func(hi)
    if value_hi == 0:
        return hi
    if (value_lo < 0) == (value_hi < 0):
        raise NoBracketError(
            f"no sign change between {format_utc(lo)} ({value_lo:+.6g}) "
            f"and {format_utc(hi)} ({value_hi:+.6g})"
        )

    low, high = lo, hi
    for _ in range(iterations):
        mid = midpoint(low, high)
        value_mid = func(mid)
        if value_mid == 0:
            return mid
        if (value_lo < 0) == (value_mid < 0):
            low, value_lo = mid, value_mid
        else:
            high = mid
    return midpoint(low, high)

"""Principal solar term crossings (solar longitude at multiples of 30 degrees)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .errors import NoBracketError, PrincipalTermNotFoundError
from .provider import EphemerisProvider, sample_solar_longitude
from .roots import bisect_root
from .timeutil import format_utc, require_utc

PRINCIPAL_TERM_ANGLES: Sequence[int] = tuple(range(0, 360, 30))
SPRING_EQUINOX_ANGLE = 0


def normalize_degrees(angle: float) -> float:
    """Wrap *angle* into ``[-180, 180)``."""

    return (angle + 180.0) % 360.0 - 180.0


@dataclass(frozen=True)
class PrincipalTerm:
    angle: int
    instant: datetime


class SolarTermLocator:
    """Finds the instants the Sun crosses principal-term longitudes."""

    def __init__(self, ephemeris: EphemerisProvider, iterations: int = 40) -> None:
        self.ephemeris = ephemeris
        self.iterations = iterations

    def _delta(self, target: float):
        def _signal(instant: datetime) -> float:
            return normalize_degrees(
                sample_solar_longitude(self.ephemeris, instant) - target
            )

        return _signal

    @staticmethod
    def _brackets(delta_start: float, delta_end: float) -> bool:
        # The Sun only moves forward, so a real crossing goes from negative to
        # non-negative. A jump of 180 degrees or more is the wrap point, not a root.
        if delta_start == 0:
            return True
        return delta_start < 0 < delta_end and delta_end - delta_start < 180.0

    def _locate(
        self,
        start: datetime,
        end: datetime,
        targets: Iterable[float],
    ) -> List[PrincipalTerm]:
        start = require_utc(start, "start")
        end = require_utc(end, "end")
        if not start < end:
            raise PrincipalTermNotFoundError(
                f"empty window {format_utc(start)} .. {format_utc(end)}"
            )
        lon_start = sample_solar_longitude(self.ephemeris, start)
        lon_end = sample_solar_longitude(self.ephemeris, end)

        found: List[PrincipalTerm] = []
        for target in targets:
            delta_start = normalize_degrees(lon_start - target)
            delta_end = normalize_degrees(lon_end - target)
            if not self._brackets(delta_start, delta_end):
                continue
            if delta_start == 0:
                found.append(PrincipalTerm(int(target), start))
                continue
            try:
                instant = bisect_root(self._delta(target), start, end, self.iterations)
            except NoBracketError:
                continue
            # Half-open window: a term landing on ``end`` opens the next one.
            if instant < end:
                found.append(PrincipalTerm(int(target), instant))
        if not found:
            raise PrincipalTermNotFoundError(
                f"no principal term between {format_utc(start)} and {format_utc(end)}"
            )
        found.sort(key=lambda term: term.instant)
        return found

    def locate(
        self,
        start: datetime,
        end: datetime,
        targets: Iterable[float] = PRINCIPAL_TERM_ANGLES,
    ) -> Optional[PrincipalTerm]:
        """Return the earliest principal term in ``[start, end)``, or ``None``."""

        try:
            return self._locate(start, end, targets)[0]
        except PrincipalTermNotFoundError:
            return None

    def crossing(self, start: datetime, end: datetime, target: float) -> Optional[datetime]:
        """Instant in ``[start, end)`` at which the longitude equals *target*."""

        term = self.locate(start, end, (target,))
        return term.instant if term is not None else None

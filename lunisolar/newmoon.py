"""Enumeration of conjunctions (new moons) inside a time window."""

from __future__ import annotations

import json
import logging
import math
from datetime import UTC, datetime, timedelta
from typing import List, Optional

from .config import NewMoonStrategy
from .errors import InsufficientMoonDataError, NoBracketError
from .provider import EphemerisProvider, phase_offset
from .roots import bisect_root
from .timeutil import ONE_DAY, day_start, elapsed_days, format_utc, require_utc, utc_day

LOGGER = logging.getLogger(__name__)

SYNODIC_MONTH_DAYS = 29.530588853
SYNODIC_MONTH = timedelta(days=SYNODIC_MONTH_DAYS)
# Mean conjunction of lunation 0.
LUNATION_EPOCH = datetime(2000, 1, 6, 18, 14, tzinfo=UTC)

MIN_CONJUNCTIONS_PER_YEAR = 12
SOLAR_YEAR_DAYS = 365.2422
MAX_LUNATIONS_PER_SCAN = 40
MAX_SCAN_DAYS = 800
REFINE_HALF_WIDTH = timedelta(days=2)
DUPLICATE_SEPARATION = ONE_DAY


def lunation_number(instant: datetime) -> int:
    """Index of the mean lunation in progress at *instant*."""

    return math.floor(elapsed_days(LUNATION_EPOCH, require_utc(instant)) / SYNODIC_MONTH_DAYS)


class NewMoonLocator:
    """Lists conjunction instants using the configured strategy."""

    def __init__(
        self,
        ephemeris: EphemerisProvider,
        iterations: int = 40,
        strategy: NewMoonStrategy = NewMoonStrategy.lunation_index,
        phase_epsilon: float = 0.03,
    ) -> None:
        self.ephemeris = ephemeris
        self.iterations = iterations
        self.strategy = NewMoonStrategy(strategy)
        self.phase_epsilon = phase_epsilon

    def _offset(self, instant: datetime) -> float:
        return phase_offset(self.ephemeris, instant)

    def _refine(self, lo: datetime, hi: datetime) -> Optional[datetime]:
        offset_lo = self._offset(lo)
        offset_hi = self._offset(hi)
        if offset_lo == 0:
            return lo
        # Offsets wrap at full moon; a conjunction goes from negative to positive.
        if not (offset_lo < 0 < offset_hi and offset_hi - offset_lo < 0.5):
            return None
        try:
            return bisect_root(self._offset, lo, hi, self.iterations)
        except NoBracketError:
            return None

    def _by_lunation_index(self, start: datetime, end: datetime) -> List[datetime]:
        found: List[datetime] = []
        first = lunation_number(start) - 1
        for index in range(first, first + MAX_LUNATIONS_PER_SCAN):
            estimate = LUNATION_EPOCH + index * SYNODIC_MONTH
            if estimate - SYNODIC_MONTH > end:
                break
            # Pull the mean estimate onto the provider's own phase.
            estimate -= self._offset(estimate) * SYNODIC_MONTH
            conjunction = self._refine(estimate - REFINE_HALF_WIDTH, estimate + REFINE_HALF_WIDTH)
            if conjunction is None:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "lunation_skipped",
                            "lunation": index,
                            "estimate": format_utc(estimate),
                        }
                    )
                )
                continue
            if start <= conjunction < end:
                found.append(conjunction)
        return found

    def _by_phase_scan(self, start: datetime, end: datetime) -> List[datetime]:
        first_day = utc_day(start)
        total_days = min((utc_day(end) - first_day).days + 1, MAX_SCAN_DAYS)
        runs: List[List[datetime]] = []
        previous_near = False
        for step in range(total_days):
            sample = day_start(first_day) + step * ONE_DAY
            offset = self._offset(sample)
            near = abs(offset) <= self.phase_epsilon
            if near:
                if previous_near:
                    runs[-1].append(sample)
                else:
                    runs.append([sample])
            previous_near = near

        found: List[datetime] = []
        for run in runs:
            conjunction = self._refine(run[0] - ONE_DAY, run[-1] + ONE_DAY)
            if conjunction is None:
                conjunction = min(run, key=lambda day: abs(self._offset(day)))
            if start <= conjunction < end:
                found.append(conjunction)
        return found

    def between(self, start: datetime, end: datetime) -> List[datetime]:
        """Sorted, deduplicated conjunctions in ``[start, end)``."""

        start = require_utc(start, "start")
        end = require_utc(end, "end")
        if not start < end:
            return []
        if self.strategy is NewMoonStrategy.phase_scan:
            raw = self._by_phase_scan(start, end)
        else:
            raw = self._by_lunation_index(start, end)

        conjunctions: List[datetime] = []
        for instant in sorted(raw):
            if conjunctions and instant - conjunctions[-1] < DUPLICATE_SEPARATION:
                continue
            conjunctions.append(instant)

        if elapsed_days(start, end) >= SOLAR_YEAR_DAYS and len(conjunctions) < MIN_CONJUNCTIONS_PER_YEAR:
            raise InsufficientMoonDataError(
                f"found {len(conjunctions)} conjunctions between {format_utc(start)} "
                f"and {format_utc(end)}; at least {MIN_CONJUNCTIONS_PER_YEAR} required"
            )
        return conjunctions

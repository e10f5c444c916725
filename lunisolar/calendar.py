"""Assembly of lunisolar years from equinoxes, conjunctions and principal terms."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple

from .config import AnchorRule, LeapNumbering, LeapRule, LunisolarConfig
from .errors import EquinoxNotFoundError, YearAssemblyError
from .newmoon import NewMoonLocator
from .provider import EphemerisProvider
from .terms import SPRING_EQUINOX_ANGLE, PrincipalTerm, SolarTermLocator
from .timeutil import days_between, elapsed_days, format_utc, utc_day

LOGGER = logging.getLogger(__name__)

MAX_MONTHS_PER_YEAR = 13
MIN_MONTHS_PER_YEAR = 12
# Day 79 +/- 2 of the year, padded by a day on each side.
EQUINOX_WINDOW = ((3, 17), (3, 24))
CONJUNCTION_LEAD = timedelta(days=45)


@dataclass(frozen=True)
class LunarMonth:
    start: datetime
    end: datetime
    length_days: int
    contains_principal_term: bool
    is_leap: bool
    display_month_number: int
    principal_term: Optional[PrincipalTerm] = None

    def owns(self, instant: datetime) -> bool:
        """Whether the UTC calendar day of *instant* belongs to this month."""

        return utc_day(self.start) <= utc_day(instant) < utc_day(self.end)


@dataclass(frozen=True)
class LunisolarYear:
    year_index: int
    equinox: datetime
    year_start: datetime
    months: Tuple[LunarMonth, ...]
    anchor_source: str = "ephemeris"

    @property
    def year_end(self) -> datetime:
        return self.months[-1].end

    @property
    def leap_month(self) -> Optional[LunarMonth]:
        for month in self.months:
            if month.is_leap:
                return month
        return None

    def owns(self, instant: datetime) -> bool:
        return utc_day(self.year_start) <= utc_day(instant) < utc_day(self.year_end)

    def month_index_for(self, instant: datetime) -> Optional[int]:
        for index, month in enumerate(self.months):
            if month.owns(instant):
                return index
        return None

    def find_month(self, display_month_number: int, is_leap: bool) -> Optional[int]:
        for index, month in enumerate(self.months):
            if month.display_month_number == display_month_number and month.is_leap == is_leap:
                return index
        return None


def number_months(leap_flags: Sequence[bool], convention: LeapNumbering) -> List[int]:
    """Display numbers for months with the given leap flags."""

    if convention is LeapNumbering.sequential:
        return list(range(1, len(leap_flags) + 1))
    numbers: List[int] = []
    for position, is_leap in enumerate(leap_flags):
        if position == 0:
            numbers.append(1)
        elif is_leap:
            numbers.append(numbers[-1])
        else:
            numbers.append(numbers[-1] + 1)
    return numbers


def select_year_start(
    equinox: datetime,
    conjunctions: Sequence[datetime],
    rule: AnchorRule,
) -> Optional[datetime]:
    """Pick the conjunction that opens the year anchored on *equinox*."""

    if rule is AnchorRule.equinox_containing_month:
        for current, following in zip(conjunctions, conjunctions[1:]):
            if current <= equinox < following:
                return current
    # Also the explicit rule when no interval contains the equinox.
    for conjunction in conjunctions:
        if conjunction >= equinox:
            return conjunction
    return None


class LunarYearBuilder:
    """Builds :class:`LunisolarYear` values for a year index."""

    def __init__(self, ephemeris: EphemerisProvider, config: Optional[LunisolarConfig] = None) -> None:
        self.ephemeris = ephemeris
        self.config = config or LunisolarConfig()
        self.terms = SolarTermLocator(ephemeris, self.config.root_finder_iterations)
        self.new_moons = NewMoonLocator(
            ephemeris,
            self.config.root_finder_iterations,
            strategy=self.config.new_moon_strategy,
            phase_epsilon=self.config.new_moon_phase_epsilon,
        )

    def spring_equinox(self, year: int) -> Tuple[datetime, str]:
        """Return the equinox of *year* and where it came from."""

        (start_month, start_day), (end_month, end_day) = EQUINOX_WINDOW
        start = datetime(year, start_month, start_day, tzinfo=UTC)
        end = datetime(year, end_month, end_day, tzinfo=UTC)
        equinox = self.terms.crossing(start, end, SPRING_EQUINOX_ANGLE)
        if equinox is not None:
            return equinox, "ephemeris"
        fallback = self.config.fallback_equinox(year)
        if fallback is None:
            raise EquinoxNotFoundError(
                f"no spring equinox between {format_utc(start)} and {format_utc(end)}"
            )
        LOGGER.warning(
            json.dumps(
                {"event": "equinox_fallback", "year": year, "equinox": format_utc(fallback)}
            )
        )
        return fallback, "fallback"

    def _anchor(self, year: int, conjunctions: Sequence[datetime]) -> Tuple[datetime, datetime, str]:
        """``(equinox, year_start, source)`` for *year*."""

        override = self.config.fixed_year_start_overrides.get(year)
        if override is not None:
            return override, override, "override"
        equinox, source = self.spring_equinox(year)
        year_start = select_year_start(equinox, conjunctions, self.config.anchor_rule)
        if year_start is None:
            raise YearAssemblyError(
                f"no conjunction at or after the {year} equinox {format_utc(equinox)}"
            )
        return equinox, year_start, source

    def _conjunctions(self, year: int) -> List[datetime]:
        override = self.config.fixed_year_start_overrides.get(year)
        if override is not None:
            center = override
        else:
            center = datetime(year, 3, 20, tzinfo=UTC)
        start = center - CONJUNCTION_LEAD
        end = center + timedelta(days=self.config.new_moon_search_window_days)
        return self.new_moons.between(start, end)

    @staticmethod
    def _boundaries(
        year: int,
        year_start: datetime,
        next_start: datetime,
        conjunctions: Sequence[datetime],
    ) -> List[datetime]:
        """Month boundaries from *year_start* up to and including *next_start*."""

        if not conjunctions or conjunctions[-1] < next_start:
            raise YearAssemblyError(
                f"conjunction window for {year} ends before the next year start "
                f"{format_utc(next_start)}"
            )
        boundaries = [year_start]
        for conjunction in conjunctions:
            # Months own whole UTC days; an override sharing a day with a
            # conjunction absorbs it.
            if days_between(boundaries[-1], conjunction) < 1:
                continue
            if days_between(conjunction, next_start) < 1:
                break
            if len(boundaries) == MAX_MONTHS_PER_YEAR:
                raise YearAssemblyError(
                    f"year {year} reached {MAX_MONTHS_PER_YEAR} months before the next "
                    f"year start {format_utc(next_start)}"
                )
            boundaries.append(conjunction)
        boundaries.append(next_start)
        return boundaries

    def build(self, year: int) -> LunisolarYear:
        """Assemble the lunisolar year anchored on the spring equinox of *year*."""

        conjunctions = self._conjunctions(year)
        equinox, year_start, source = self._anchor(year, conjunctions)
        _, next_start, _ = self._anchor(year + 1, conjunctions)
        if next_start <= year_start:
            raise YearAssemblyError(
                f"year {year + 1} starts at {format_utc(next_start)}, "
                f"not after {format_utc(year_start)}"
            )

        boundaries = self._boundaries(year, year_start, next_start, conjunctions)
        spans = list(zip(boundaries, boundaries[1:]))
        if len(spans) < MIN_MONTHS_PER_YEAR:
            raise YearAssemblyError(
                f"year {year} holds {len(spans)} months "
                f"({elapsed_days(year_start, next_start):.1f} days); "
                f"a lunar year needs {MIN_MONTHS_PER_YEAR}"
            )

        terms = [self.terms.locate(start, end) for start, end in spans]
        leap_position: Optional[int] = None
        if (
            self.config.leap_rule is LeapRule.first_termless_month
            or len(spans) == MAX_MONTHS_PER_YEAR
        ):
            for position, term in enumerate(terms):
                if term is None:
                    leap_position = position
                    break
        leap_flags = [position == leap_position for position in range(len(spans))]
        numbers = number_months(leap_flags, self.config.leap_numbering)

        months = tuple(
            LunarMonth(
                start=start,
                end=end,
                length_days=days_between(start, end),
                contains_principal_term=term is not None,
                is_leap=is_leap,
                display_month_number=number,
                principal_term=term,
            )
            for (start, end), term, is_leap, number in zip(spans, terms, leap_flags, numbers)
        )
        built = LunisolarYear(
            year_index=year,
            equinox=equinox,
            year_start=year_start,
            months=months,
            anchor_source=source,
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "year_built",
                    "year": year,
                    "year_start": format_utc(year_start),
                    "months": len(months),
                    "leap_month": leap_position,
                    "anchor_source": source,
                }
            )
        )
        return built


class YearCache:
    """Read-through cache of built years keyed by year index.

    Entries are stored only after a year is fully built, so readers never see
    a partial value.
    """

    def __init__(self, builder: LunarYearBuilder) -> None:
        self.builder = builder
        self._years: Dict[int, LunisolarYear] = {}
        self._lock = Lock()

    def get(self, year: int) -> LunisolarYear:
        cached = self._years.get(year)
        if cached is not None:
            return cached
        with self._lock:
            cached = self._years.get(year)
            if cached is not None:
                return cached
            built = self.builder.build(year)
            self._years[year] = built
            return built

    def clear(self) -> None:
        with self._lock:
            self._years.clear()

    def __contains__(self, year: object) -> bool:
        return year in self._years

    def __len__(self) -> int:
        return len(self._years)

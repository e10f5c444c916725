"""Conversion between UTC instants and lunisolar coordinates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .calendar import LunarYearBuilder, LunisolarYear, YearCache
from .config import LunisolarConfig
from .errors import DateOutOfRangeError, MonthNotFoundError
from .provider import EphemerisProvider
from .timeutil import days_between, format_utc, require_utc, utc_day

__all__ = [
    "LunisolarDate",
    "LunisolarEngine",
    "build_lunisolar_year",
    "from_lunisolar",
    "to_lunisolar",
]


@dataclass(frozen=True)
class LunisolarDate:
    """A position inside one particular :class:`LunisolarYear`."""

    year_index: int
    month_index: int
    display_month_number: int
    month_day: int
    is_leap: bool

    def key(self):
        return (self.year_index, self.display_month_number, self.month_day, self.is_leap)


class LunisolarEngine:
    """Entry point tying an ephemeris, a configuration and a year cache together."""

    def __init__(
        self,
        ephemeris: EphemerisProvider,
        config: Optional[LunisolarConfig] = None,
    ) -> None:
        self.config = config or LunisolarConfig()
        self.ephemeris = ephemeris
        self.builder = LunarYearBuilder(ephemeris, self.config)
        self.years = YearCache(self.builder)

    def year(self, year_index: int) -> LunisolarYear:
        return self.years.get(year_index)

    def rebuilt(self, config: Optional[LunisolarConfig] = None) -> "LunisolarEngine":
        """A fresh engine on the same ephemeris, with an empty cache."""

        return LunisolarEngine(self.ephemeris, config or self.config)

    def year_containing(self, instant: datetime) -> LunisolarYear:
        instant = require_utc(instant)
        calendar_year = utc_day(instant).year
        for candidate in (calendar_year, calendar_year - 1, calendar_year + 1):
            year = self.year(candidate)
            if year.owns(instant):
                return year
        raise DateOutOfRangeError(
            f"no lunisolar year around {calendar_year} contains {format_utc(instant)}"
        )

    def build_lunisolar_year(self, reference: datetime) -> LunisolarYear:
        return self.year_containing(reference)

    def to_lunisolar(self, instant: datetime) -> LunisolarDate:
        instant = require_utc(instant)
        year = self.year_containing(instant)
        month_index = year.month_index_for(instant)
        if month_index is None:  # pragma: no cover - owns() implies a month
            raise DateOutOfRangeError(f"{format_utc(instant)} falls between months")
        month = year.months[month_index]
        return LunisolarDate(
            year_index=year.year_index,
            month_index=month_index,
            display_month_number=month.display_month_number,
            month_day=days_between(month.start, instant) + 1,
            is_leap=month.is_leap,
        )

    def from_lunisolar(
        self,
        year_index: int,
        display_month_number: int,
        month_day: int,
        is_leap: bool = False,
    ) -> datetime:
        year = self.year(year_index)
        month_index = year.find_month(display_month_number, is_leap)
        if month_index is None:
            label = f"{'leap ' if is_leap else ''}month {display_month_number}"
            raise MonthNotFoundError(f"lunisolar year {year_index} has no {label}")
        month = year.months[month_index]
        if not 1 <= month_day <= month.length_days:
            raise DateOutOfRangeError(
                f"day {month_day} outside 1..{month.length_days} of month "
                f"{display_month_number} in {year_index}"
            )
        return month.start + timedelta(days=month_day - 1)


def _engine(config: Optional[LunisolarConfig], ephemeris: EphemerisProvider) -> LunisolarEngine:
    return LunisolarEngine(ephemeris, config)


def to_lunisolar(
    instant: datetime,
    config: Optional[LunisolarConfig] = None,
    *,
    ephemeris: EphemerisProvider,
) -> LunisolarDate:
    return _engine(config, ephemeris).to_lunisolar(instant)


def from_lunisolar(
    year_index: int,
    display_month_number: int,
    month_day: int,
    is_leap: bool = False,
    config: Optional[LunisolarConfig] = None,
    *,
    ephemeris: EphemerisProvider,
) -> datetime:
    return _engine(config, ephemeris).from_lunisolar(
        year_index, display_month_number, month_day, is_leap
    )


def build_lunisolar_year(
    reference: datetime,
    config: Optional[LunisolarConfig] = None,
    *,
    ephemeris: EphemerisProvider,
) -> LunisolarYear:
    """The lunisolar year containing *reference*."""

    return _engine(config, ephemeris).build_lunisolar_year(reference)

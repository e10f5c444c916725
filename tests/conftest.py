from __future__ import annotations

import sys
from bisect import bisect_right
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import List, Sequence, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TROPICAL_YEAR_DAYS = 365.2422
SYNODIC_DAYS = 29.530588853
SUN_RATE = 360.0 / TROPICAL_YEAR_DAYS

EQUINOX_2025 = datetime(2025, 3, 20, 9, 1, tzinfo=UTC)
NEW_MOON_2025 = datetime(2025, 3, 29, 10, 58, tzinfo=UTC)


def _days(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400.0


class LinearEphemeris:
    """Sun and Moon on uniform mean motions."""

    def __init__(
        self,
        equinox: datetime = EQUINOX_2025,
        new_moon: datetime = NEW_MOON_2025,
        synodic_days: float = SYNODIC_DAYS,
    ) -> None:
        self.equinox = equinox
        self.new_moon = new_moon
        self.synodic_days = synodic_days
        self.calls = 0

    def solar_longitude_degrees(self, instant: datetime) -> float:
        self.calls += 1
        return (SUN_RATE * _days(self.equinox, instant)) % 360.0

    def moon_phase(self, instant: datetime) -> float:
        self.calls += 1
        return (_days(self.new_moon, instant) / self.synodic_days) % 1.0


def _interpolate(knots: Sequence[Tuple[datetime, float]], instant: datetime, rate: float) -> float:
    times = [moment for moment, _ in knots]
    if instant <= times[0]:
        return knots[0][1] + rate * _days(times[0], instant)
    if instant >= times[-1]:
        return knots[-1][1] + rate * _days(times[-1], instant)
    index = bisect_right(times, instant)
    (t0, v0), (t1, v1) = knots[index - 1], knots[index]
    fraction = (instant - t0) / (t1 - t0)
    return v0 + fraction * (v1 - v0)


class ScheduledEphemeris:
    """Piecewise-linear Sun longitude and Moon phase through given events.

    ``terms`` pins the unwrapped solar longitude at instants; ``conjunctions``
    pins whole lunations. Outside the knots both run at mean rates.
    """

    def __init__(
        self,
        terms: Sequence[Tuple[datetime, float]],
        conjunctions: Sequence[datetime],
    ) -> None:
        self.terms = sorted(terms)
        self.conjunctions = sorted(conjunctions)
        self.lunations = [(moment, float(index)) for index, moment in enumerate(self.conjunctions)]

    def solar_longitude_degrees(self, instant: datetime) -> float:
        return _interpolate(self.terms, instant, SUN_RATE) % 360.0

    def moon_phase(self, instant: datetime) -> float:
        return _interpolate(self.lunations, instant, 1.0 / SYNODIC_DAYS) % 1.0


class FailingEphemeris(LinearEphemeris):
    """Fails for every instant at or after *cutoff*."""

    def __init__(self, cutoff: datetime) -> None:
        super().__init__()
        self.cutoff = cutoff

    def solar_longitude_degrees(self, instant: datetime) -> float:
        if instant >= self.cutoff:
            raise RuntimeError("kernel coverage ended")
        return super().solar_longitude_degrees(instant)

    def moon_phase(self, instant: datetime) -> float:
        if instant >= self.cutoff:
            raise RuntimeError("kernel coverage ended")
        return super().moon_phase(instant)


# A 13-month year for 2030 whose sixth month holds no principal term.
LEAP_EQUINOX = datetime(2030, 3, 20, 12, 0, tzinfo=UTC)
LEAP_MONTH_DAYS = 29.5
# Conjunctions fall at 06:00 and 18:00 so bisection noise never crosses a UTC day.
LEAP_FIRST_CONJUNCTION = LEAP_EQUINOX - timedelta(days=25, hours=6)
# Day offsets (plus six hours) from the first conjunction at which the Sun
# reaches 0, 30, ... 330 degrees.
LEAP_TERM_OFFSETS = [25, 40, 70, 100, 130, 180, 210, 240, 270, 300, 330, 360]
LEAP_POSITION = 5


def leap_year_conjunctions() -> List[datetime]:
    return [
        LEAP_FIRST_CONJUNCTION + timedelta(days=LEAP_MONTH_DAYS * index)
        for index in range(-4, 24)
    ]


def leap_year_terms() -> List[Tuple[datetime, float]]:
    knots = [
        (LEAP_FIRST_CONJUNCTION + timedelta(days=offset, hours=6), 30.0 * index)
        for index, offset in enumerate(LEAP_TERM_OFFSETS)
    ]
    knots.append((LEAP_EQUINOX + timedelta(days=TROPICAL_YEAR_DAYS), 360.0))
    return knots


# A 12-month 2030: the fifth month holds two principal terms, the sixth none.
SHORT_FIRST_CONJUNCTION = datetime(2030, 3, 15, 6, 0, tzinfo=UTC)
SHORT_TERM_OFFSETS = [5.25, 35, 65, 95, 120, 145, 180, 210, 240, 270, 300, 330]
SHORT_TERMLESS_POSITION = 5


def short_year_conjunctions() -> List[datetime]:
    return [
        SHORT_FIRST_CONJUNCTION + timedelta(days=LEAP_MONTH_DAYS * index)
        for index in range(-4, 24)
    ]


def short_year_terms() -> List[Tuple[datetime, float]]:
    knots = [
        (SHORT_FIRST_CONJUNCTION + timedelta(days=offset), 30.0 * index)
        for index, offset in enumerate(SHORT_TERM_OFFSETS)
    ]
    knots.append((knots[0][0] + timedelta(days=TROPICAL_YEAR_DAYS), 360.0))
    return knots


@pytest.fixture
def linear_ephemeris() -> LinearEphemeris:
    return LinearEphemeris()


@pytest.fixture
def leap_ephemeris() -> ScheduledEphemeris:
    return ScheduledEphemeris(leap_year_terms(), leap_year_conjunctions())


@pytest.fixture
def termless_ephemeris() -> ScheduledEphemeris:
    return ScheduledEphemeris(short_year_terms(), short_year_conjunctions())

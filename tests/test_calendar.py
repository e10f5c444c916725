from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from lunisolar.calendar import (
    MAX_MONTHS_PER_YEAR,
    LunarYearBuilder,
    YearCache,
    number_months,
    select_year_start,
)
from lunisolar.config import AnchorRule, LeapNumbering, LeapRule, LunisolarConfig
from lunisolar.errors import EquinoxNotFoundError, YearAssemblyError
from lunisolar.timeutil import utc_day

from conftest import (
    LEAP_EQUINOX,
    LEAP_FIRST_CONJUNCTION,
    LEAP_MONTH_DAYS,
    LEAP_POSITION,
    SHORT_FIRST_CONJUNCTION,
    SHORT_TERMLESS_POSITION,
    LinearEphemeris,
)

TOLERANCE = timedelta(seconds=1)


def _leap_conjunction(index: int) -> datetime:
    return LEAP_FIRST_CONJUNCTION + timedelta(days=LEAP_MONTH_DAYS * index)


def _close(left: datetime, right: datetime) -> bool:
    return abs(left - right) < TOLERANCE


@pytest.fixture(scope="module")
def linear_years():
    builder = LunarYearBuilder(LinearEphemeris())
    return {year: builder.build(year) for year in range(2024, 2034)}


def test_number_months_repeats_previous_for_leap():
    flags = [False] * 13
    flags[5] = True
    assert number_months(flags, LeapNumbering.repeat_previous) == [1, 2, 3, 4, 5, 5, 6, 7, 8, 9, 10, 11, 12]
    assert number_months(flags, LeapNumbering.sequential) == list(range(1, 14))
    assert number_months([False] * 12, LeapNumbering.repeat_previous) == list(range(1, 13))


def test_select_year_start_rules():
    c0 = datetime(2025, 2, 28, tzinfo=UTC)
    c1 = c0 + timedelta(days=29.5)
    c2 = c1 + timedelta(days=29.5)
    equinox = datetime(2025, 3, 20, 9, tzinfo=UTC)
    conjunctions = [c0, c1, c2]
    assert select_year_start(equinox, conjunctions, AnchorRule.equinox_containing_month) == c0
    assert select_year_start(equinox, conjunctions, AnchorRule.first_new_moon_after_equinox) == c1
    assert select_year_start(c2 + timedelta(days=1), conjunctions, AnchorRule.first_new_moon_after_equinox) is None


def test_equinox_on_a_conjunction_opens_that_month():
    c0 = datetime(2025, 2, 28, tzinfo=UTC)
    c1 = c0 + timedelta(days=29.5)
    c2 = c1 + timedelta(days=29.5)
    for rule in AnchorRule:
        assert select_year_start(c1, [c0, c1, c2], rule) == c1


def test_months_partition_consecutive_years(linear_years):
    for year in range(2024, 2033):
        built = linear_years[year]
        assert built.year_index == year
        assert built.months[0].start == built.year_start
        for current, following in zip(built.months, built.months[1:]):
            assert current.end == following.start
        assert built.year_end == linear_years[year + 1].year_start


def test_month_lengths_and_leap_cardinality(linear_years):
    leap_years = 0
    for year in range(2024, 2033):
        built = linear_years[year]
        assert len(built.months) in (12, 13)
        assert all(month.length_days in (29, 30) for month in built.months)
        assert sum(month.length_days for month in built.months) == (
            utc_day(built.year_end) - utc_day(built.year_start)
        ).days
        leaps = [month for month in built.months if month.is_leap]
        assert len(leaps) == len(built.months) - 12
        if leaps:
            leap_years += 1
            assert not leaps[0].contains_principal_term
            first_without = next(m for m in built.months if not m.contains_principal_term)
            assert first_without is leaps[0]
        else:
            assert all(month.contains_principal_term for month in built.months)
    # Seven leap years in nineteen.
    assert 2 <= leap_years <= 5


def test_display_numbers_are_monotonic(linear_years):
    for year in range(2024, 2033):
        numbers = [month.display_month_number for month in linear_years[year].months]
        assert numbers[0] == 1
        assert numbers[-1] == 12
        assert all(b - a in (0, 1) for a, b in zip(numbers, numbers[1:]))


def test_equinox_falls_in_the_first_month(linear_years):
    for year in range(2024, 2033):
        built = linear_years[year]
        assert built.anchor_source == "ephemeris"
        assert built.year_start <= built.equinox < built.months[0].end
        assert built.months[0].principal_term.angle == 0


def test_leap_year_structure(leap_ephemeris):
    built = LunarYearBuilder(leap_ephemeris).build(2030)
    assert built.equinox == LEAP_EQUINOX
    assert _close(built.year_start, _leap_conjunction(0))
    assert _close(built.months[0].end, _leap_conjunction(1))
    assert len(built.months) == 13
    assert built.leap_month is built.months[LEAP_POSITION]
    assert [m.display_month_number for m in built.months] == [1, 2, 3, 4, 5, 5, 6, 7, 8, 9, 10, 11, 12]
    assert [m.is_leap for m in built.months].count(True) == 1
    assert [m.length_days for m in built.months[:4]] == [29, 30, 29, 30]
    assert _close(built.year_end, _leap_conjunction(13))


def test_sequential_numbering(leap_ephemeris):
    config = LunisolarConfig(leap_numbering=LeapNumbering.sequential)
    built = LunarYearBuilder(leap_ephemeris, config).build(2030)
    assert [m.display_month_number for m in built.months] == list(range(1, 14))
    assert built.months[LEAP_POSITION].is_leap


def test_first_new_moon_after_equinox(leap_ephemeris):
    config = LunisolarConfig(anchor_rule=AnchorRule.first_new_moon_after_equinox)
    built = LunarYearBuilder(leap_ephemeris, config).build(2030)
    assert _close(built.year_start, _leap_conjunction(1))
    assert built.year_start > built.equinox
    assert len(built.months) == 13
    assert built.leap_month is built.months[LEAP_POSITION - 1]
    assert built.leap_month.display_month_number == LEAP_POSITION - 1


def test_fixed_year_start_override(leap_ephemeris):
    override = datetime(2030, 3, 1, tzinfo=UTC)
    config = LunisolarConfig(fixed_year_start_overrides={2030: override})
    built = LunarYearBuilder(leap_ephemeris, config).build(2030)
    assert built.anchor_source == "override"
    assert built.year_start == override
    assert built.months[0].start == override
    assert _close(built.months[0].end, _leap_conjunction(1))
    assert len(built.months) == 13


def test_override_on_a_conjunction_day_absorbs_it(leap_ephemeris):
    config = LunisolarConfig(fixed_year_start_overrides={2030: LEAP_FIRST_CONJUNCTION})
    built = LunarYearBuilder(leap_ephemeris, config).build(2030)
    assert built.year_start == LEAP_FIRST_CONJUNCTION
    assert len(built.months) == 13
    assert built.months[0].length_days == 29


def test_short_year_is_rejected(leap_ephemeris):
    config = LunisolarConfig(
        fixed_year_start_overrides={
            2030: LEAP_FIRST_CONJUNCTION,
            2031: datetime(2030, 6, 1, tzinfo=UTC),
        }
    )
    with pytest.raises(YearAssemblyError):
        LunarYearBuilder(leap_ephemeris, config).build(2030)


def test_boundaries_respect_month_cap():
    start = datetime(2030, 1, 1, tzinfo=UTC)
    conjunctions = [start + timedelta(days=20 * k) for k in range(1, 20)]
    with pytest.raises(YearAssemblyError):
        LunarYearBuilder._boundaries(2030, start, start + timedelta(days=380), conjunctions)
    assert MAX_MONTHS_PER_YEAR == 13


def test_boundaries_need_conjunctions_past_next_start():
    start = datetime(2030, 1, 1, tzinfo=UTC)
    conjunctions = [start + timedelta(days=29.5 * k) for k in range(1, 6)]
    with pytest.raises(YearAssemblyError):
        LunarYearBuilder._boundaries(2030, start, start + timedelta(days=384), conjunctions)


def test_equinox_fallback_and_failure():
    # Sun a quarter turn ahead: no 0 degree crossing in the March window.
    shifted = LinearEphemeris(equinox=datetime(2024, 12, 20, tzinfo=UTC))
    equinox, source = LunarYearBuilder(shifted).spring_equinox(2025)
    assert (equinox, source) == (datetime(2025, 3, 20, tzinfo=UTC), "fallback")

    with pytest.raises(EquinoxNotFoundError):
        LunarYearBuilder(shifted, LunisolarConfig(equinox_fallback=None)).spring_equinox(2025)


def test_located_equinox(linear_ephemeris):
    equinox, source = LunarYearBuilder(linear_ephemeris).spring_equinox(2025)
    assert source == "ephemeris"
    assert abs(equinox - linear_ephemeris.equinox) < timedelta(seconds=5)


def test_year_cache_builds_once(linear_ephemeris):
    cache = YearCache(LunarYearBuilder(linear_ephemeris))
    first = cache.get(2025)
    calls = linear_ephemeris.calls
    assert cache.get(2025) is first
    assert linear_ephemeris.calls == calls
    assert 2025 in cache and len(cache) == 1
    cache.clear()
    assert 2025 not in cache
    assert cache.get(2025) == first


def test_month_owns_utc_days(leap_ephemeris):
    built = LunarYearBuilder(leap_ephemeris).build(2030)
    first, second = built.months[0], built.months[1]
    last_day = datetime.combine(utc_day(first.end) - timedelta(days=1), datetime.min.time(), UTC)
    assert first.owns(last_day + timedelta(hours=23))
    assert not first.owns(first.end)
    assert second.owns(datetime.combine(utc_day(first.end), datetime.min.time(), UTC))
    assert second.owns(first.end - timedelta(hours=1))
    assert built.month_index_for(LEAP_EQUINOX) == 0
    assert built.find_month(5, True) == LEAP_POSITION
    assert built.find_month(5, False) == LEAP_POSITION - 1
    assert built.find_month(3, True) is None


def test_termless_month_in_a_twelve_month_year_is_leap(termless_ephemeris):
    built = LunarYearBuilder(termless_ephemeris).build(2030)
    assert len(built.months) == 12
    assert built.months[0].start == built.year_start
    assert abs(built.year_start - SHORT_FIRST_CONJUNCTION) < TOLERANCE

    flags = [month.contains_principal_term for month in built.months]
    assert flags.count(False) == 1
    assert flags.index(False) == SHORT_TERMLESS_POSITION
    assert built.months[SHORT_TERMLESS_POSITION - 1].principal_term.angle == 120

    assert built.leap_month is built.months[SHORT_TERMLESS_POSITION]
    assert [m.is_leap for m in built.months].count(True) == 1
    assert [m.display_month_number for m in built.months] == [1, 2, 3, 4, 5, 5, 6, 7, 8, 9, 10, 11]


def test_thirteen_month_only_rule_keeps_twelve_month_years_plain(termless_ephemeris):
    config = LunisolarConfig(leap_rule=LeapRule.thirteen_month_years_only)
    built = LunarYearBuilder(termless_ephemeris, config).build(2030)
    assert built.leap_month is None
    assert not built.months[SHORT_TERMLESS_POSITION].contains_principal_term
    assert [m.display_month_number for m in built.months] == list(range(1, 13))


def test_thirteen_month_only_rule_still_flags_leap_years(leap_ephemeris):
    config = LunisolarConfig(leap_rule=LeapRule.thirteen_month_years_only)
    built = LunarYearBuilder(leap_ephemeris, config).build(2030)
    assert built.leap_month is built.months[LEAP_POSITION]

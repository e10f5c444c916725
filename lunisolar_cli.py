"""Print lunisolar year tables computed from a DE kernel.

Usage:
    python lunisolar_cli.py <path/to/de440s.bsp> [year | start-end | y1,y2,...]
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional, Sequence

from lunisolar.astro import EphemerisError, SpiceEphemeris
from lunisolar.calendar import LunisolarYear
from lunisolar.config import AnchorRule, LeapNumbering, LeapRule, LunisolarConfig, NewMoonStrategy
from lunisolar.convert import LunisolarEngine
from lunisolar.errors import LunisolarError

LOGGER = logging.getLogger("lunisolar-cli")


def parse_year_arguments(arg: str) -> List[int]:
    """Parse a year argument: a single year, a range, or a comma separated list."""

    years: List[int] = []
    parts = [p.strip() for p in arg.split(',') if p.strip()]
    if not parts:
        raise ValueError("empty year argument")

    for part in parts:
        if '-' in part:
            start_str, end_str = part.split('-', 1)
            start = int(start_str)
            end = int(end_str)
            if end < start:
                raise ValueError(f"range {part} ends before it starts")
            years.extend(range(start, end + 1))
        else:
            years.append(int(part))

    # Deduplicate, keeping input order.
    seen = set()
    ordered_years: List[int] = []
    for year in years:
        if year not in seen:
            ordered_years.append(year)
            seen.add(year)

    return ordered_years


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_year(year: LunisolarYear) -> str:
    lines = [
        f"Lunisolar year {year.year_index} "
        f"(equinox {_format_time(year.equinox)} UTC, {year.anchor_source})",
        "-" * 72,
    ]
    for month in year.months:
        label = f"{month.display_month_number:>2}{'L' if month.is_leap else ' '}"
        term = (
            f"term {month.principal_term.angle:>3}° {_format_time(month.principal_term.instant)}"
            if month.principal_term
            else "no principal term"
        )
        lines.append(
            f"{label}  {_format_time(month.start)}  {month.length_days:>2}d  {term}"
        )
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print lunisolar year tables (UTC).")
    parser.add_argument("ephemeris", help="path to a .bsp kernel or a directory of kernels")
    parser.add_argument("years", nargs="?", default=None, help="year, start-end, or y1,y2,...")
    parser.add_argument(
        "--anchor-rule",
        choices=[rule.value for rule in AnchorRule],
        default=AnchorRule.equinox_containing_month.value,
    )
    parser.add_argument(
        "--leap-rule",
        choices=[rule.value for rule in LeapRule],
        default=LeapRule.first_termless_month.value,
    )
    parser.add_argument(
        "--sequential-numbering",
        action="store_true",
        help="number leap months sequentially instead of repeating the previous number",
    )
    parser.add_argument(
        "--phase-scan",
        action="store_true",
        help="find new moons by daily phase scan instead of lunation index",
    )
    parser.add_argument("--json", action="store_true", help="emit one JSON document per year")
    return parser


def _year_as_json(year: LunisolarYear) -> str:
    return json.dumps(
        {
            "year": year.year_index,
            "equinox": year.equinox.isoformat(),
            "year_start": year.year_start.isoformat(),
            "anchor_source": year.anchor_source,
            "months": [
                {
                    "number": month.display_month_number,
                    "leap": month.is_leap,
                    "start": month.start.isoformat(),
                    "end": month.end.isoformat(),
                    "days": month.length_days,
                }
                for month in year.months
            ],
        },
        ensure_ascii=False,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(message)s")

    if args.years is None:
        years = [2025]
    else:
        try:
            years = parse_year_arguments(args.years)
        except ValueError as exc:
            print(f"invalid year argument: {exc}", file=sys.stderr)
            return 1

    config = LunisolarConfig(
        anchor_rule=AnchorRule(args.anchor_rule),
        leap_rule=LeapRule(args.leap_rule),
        leap_numbering=(
            LeapNumbering.sequential if args.sequential_numbering else LeapNumbering.repeat_previous
        ),
        new_moon_strategy=(
            NewMoonStrategy.phase_scan if args.phase_scan else NewMoonStrategy.lunation_index
        ),
    )
    try:
        engine = LunisolarEngine(SpiceEphemeris(args.ephemeris), config)
    except EphemerisError as exc:
        print(f"cannot load ephemeris: {exc}", file=sys.stderr)
        return 1

    for idx, year_index in enumerate(years):
        try:
            year = engine.year(year_index)
        except LunisolarError as exc:
            LOGGER.error(json.dumps({"event": "year_failed", "year": year_index, "error": str(exc)}))
            return 2
        if args.json:
            print(_year_as_json(year))
            continue
        if idx:
            print("\n" + "=" * 72 + "\n")
        print(format_year(year))
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Validated engine configuration."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

DEFAULT_ROOT_FINDER_ITERATIONS = 40
MAX_ROOT_ITERATIONS = 200
DEFAULT_NEW_MOON_WINDOW_DAYS = 450
MIN_NEW_MOON_WINDOW_DAYS = 400
MAX_NEW_MOON_WINDOW_DAYS = 800


class AnchorRule(str, Enum):
    """How the first month of a year is chosen relative to the spring equinox."""

    equinox_containing_month = "equinoxContainingMonth"
    first_new_moon_after_equinox = "firstNewMoonAfterEquinox"


class NewMoonStrategy(str, Enum):
    lunation_index = "lunationIndex"
    phase_scan = "phaseScan"


class LeapNumbering(str, Enum):
    """Display numbering convention for leap months."""

    repeat_previous = "repeatPrevious"
    sequential = "sequential"


class LeapRule(str, Enum):
    """Which years may carry a leap month."""

    first_termless_month = "firstTermlessMonth"
    # Only years of 13 months; a term-less month in a 12-month year stays ordinary.
    thirteen_month_years_only = "thirteenMonthYearsOnly"


class LunisolarConfig(BaseModel):
    """Options recognized by the calendar engine.

    The model is frozen and validated once; components read it but never
    fill in defaults of their own.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    anchor_rule: AnchorRule = Field(
        AnchorRule.equinox_containing_month, alias="anchorRule"
    )
    fixed_year_start_overrides: Dict[int, datetime] = Field(
        default_factory=dict,
        alias="fixedYearStartOverrides",
        description="Year index -> year start instant; bypasses computation",
    )
    root_finder_iterations: int = Field(
        DEFAULT_ROOT_FINDER_ITERATIONS,
        ge=1,
        le=MAX_ROOT_ITERATIONS,
        alias="rootFinderIterations",
    )
    new_moon_search_window_days: int = Field(
        DEFAULT_NEW_MOON_WINDOW_DAYS,
        ge=MIN_NEW_MOON_WINDOW_DAYS,
        le=MAX_NEW_MOON_WINDOW_DAYS,
        alias="newMoonSearchWindowDays",
    )
    new_moon_strategy: NewMoonStrategy = Field(
        NewMoonStrategy.lunation_index, alias="newMoonStrategy"
    )
    new_moon_phase_epsilon: float = Field(
        0.03, gt=0.0, lt=0.5, alias="newMoonPhaseEpsilon"
    )
    equinox_fallback: Optional[Tuple[int, int]] = Field(
        (3, 20),
        alias="equinoxFallback",
        description="(month, day) used as the equinox when it cannot be located",
    )
    leap_numbering: LeapNumbering = Field(
        LeapNumbering.repeat_previous, alias="leapNumbering"
    )
    leap_rule: LeapRule = Field(
        LeapRule.first_termless_month,
        alias="leapRule",
        description="The first month without a principal term is leap; optionally only in 13-month years",
    )

    @field_validator("fixed_year_start_overrides")
    @classmethod
    def validate_overrides(cls, value: Dict[int, datetime]) -> Dict[int, datetime]:
        normalized: Dict[int, datetime] = {}
        for year, instant in value.items():
            if instant.tzinfo is None:
                raise ValueError(f"override for {year} must be timezone-aware")
            normalized[year] = instant.astimezone(UTC)
        return normalized

    @field_validator("equinox_fallback")
    @classmethod
    def validate_fallback(cls, value: Optional[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
        if value is None:
            return value
        month, day = value
        # Any year must accept the date, so February 29 is out.
        try:
            datetime(2001, month, day)
        except ValueError as exc:
            raise ValueError(f"equinox_fallback is not a valid month/day: {value}") from exc
        return value

    @model_validator(mode="after")
    def validate_override_order(self) -> "LunisolarConfig":
        years = sorted(self.fixed_year_start_overrides)
        for earlier, later in zip(years, years[1:]):
            if later == earlier + 1 and (
                self.fixed_year_start_overrides[later]
                <= self.fixed_year_start_overrides[earlier]
            ):
                raise ValueError(
                    f"override for {later} must follow the override for {earlier}"
                )
        return self

    def fallback_equinox(self, year: int) -> Optional[datetime]:
        if self.equinox_fallback is None:
            return None
        month, day = self.equinox_fallback
        return datetime(year, month, day, tzinfo=UTC)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LunisolarConfig":
        """Build a configuration from ``LUNISOLAR_*`` environment variables.

        ``LUNISOLAR_CONFIG_FILE`` points at a JSON document with any of the
        model fields; ``LUNISOLAR_ANCHOR_RULE`` overrides the anchor rule.
        """

        env = os.environ if environ is None else environ
        payload: Dict[str, object] = {}
        config_file = env.get("LUNISOLAR_CONFIG_FILE")
        if config_file:
            path = Path(config_file).expanduser()
            payload.update(json.loads(path.read_text(encoding="utf-8")))
            LOGGER.info(json.dumps({"event": "config_file_loaded", "path": str(path)}))
        anchor_rule = env.get("LUNISOLAR_ANCHOR_RULE")
        if anchor_rule:
            payload.pop("anchorRule", None)
            payload["anchor_rule"] = anchor_rule
        return cls.model_validate(payload)

"""Lunisolar calendar engine: conjunction-bounded months on an equinox-anchored year."""

from .calendar import LunarMonth, LunarYearBuilder, LunisolarYear, YearCache
from .config import AnchorRule, LeapNumbering, LeapRule, LunisolarConfig, NewMoonStrategy
from .convert import (
    LunisolarDate,
    LunisolarEngine,
    build_lunisolar_year,
    from_lunisolar,
    to_lunisolar,
)
from .migration import AffirmationEvent, annotate, apply_migration, preview_migration

__all__ = [
    "AffirmationEvent",
    "AnchorRule",
    "LeapNumbering",
    "LeapRule",
    "LunarMonth",
    "LunarYearBuilder",
    "LunisolarConfig",
    "LunisolarDate",
    "LunisolarEngine",
    "LunisolarYear",
    "NewMoonStrategy",
    "YearCache",
    "annotate",
    "apply_migration",
    "build_lunisolar_year",
    "from_lunisolar",
    "preview_migration",
    "to_lunisolar",
]

"""The ephemeris capability consumed by the engine."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Protocol, runtime_checkable

from .errors import EphemerisUnavailableError
from .timeutil import format_utc, require_utc


@runtime_checkable
class EphemerisProvider(Protocol):
    """Anything that can report the Sun's longitude and the Moon's phase."""

    def solar_longitude_degrees(self, instant: datetime) -> float:
        """Apparent ecliptic longitude of the Sun in ``[0, 360)``."""

    def moon_phase(self, instant: datetime) -> float:
        """Phase fraction in ``[0, 1)``; 0 and 1 mark a conjunction."""


def _checked(value: object, quantity: str, instant: datetime) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise EphemerisUnavailableError(
            f"{quantity} at {format_utc(instant)} is not a number: {value!r}"
        ) from exc
    if not math.isfinite(number):
        raise EphemerisUnavailableError(
            f"{quantity} at {format_utc(instant)} is not finite: {number}"
        )
    return number


def sample_solar_longitude(provider: EphemerisProvider, instant: datetime) -> float:
    """Sample the provider, normalizing into ``[0, 360)``."""

    instant = require_utc(instant)
    try:
        value = provider.solar_longitude_degrees(instant)
    except EphemerisUnavailableError:
        raise
    except Exception as exc:
        raise EphemerisUnavailableError(
            f"Solar longitude unavailable at {format_utc(instant)}: {exc}"
        ) from exc
    return _checked(value, "solar longitude", instant) % 360.0


def sample_moon_phase(provider: EphemerisProvider, instant: datetime) -> float:
    """Sample the provider, normalizing into ``[0, 1)``."""

    instant = require_utc(instant)
    try:
        value = provider.moon_phase(instant)
    except EphemerisUnavailableError:
        raise
    except Exception as exc:
        raise EphemerisUnavailableError(
            f"Moon phase unavailable at {format_utc(instant)}: {exc}"
        ) from exc
    return _checked(value, "moon phase", instant) % 1.0


def phase_offset(provider: EphemerisProvider, instant: datetime) -> float:
    """Signed distance from the nearest conjunction, in lunations, ``[-0.5, 0.5)``."""

    phase = sample_moon_phase(provider, instant)
    return (phase + 0.5) % 1.0 - 0.5

"""Error taxonomy for the lunisolar engine."""

from __future__ import annotations


class LunisolarError(RuntimeError):
    """Base class for every failure raised by the calendar engine."""


class NoBracketError(LunisolarError):
    """Raised when a root search is started on a bracket without a sign change."""


class PrincipalTermNotFoundError(LunisolarError):
    """No principal term inside a window.

    Raised by the term scan; :meth:`SolarTermLocator.locate` turns it into ``None``.
    """


class InsufficientMoonDataError(LunisolarError):
    """Raised when fewer conjunctions than a solar year needs were found."""


class EquinoxNotFoundError(LunisolarError):
    """Raised when the spring equinox cannot be located and no fallback is set."""


class YearAssemblyError(LunisolarError):
    """Raised when month assembly hits its safety cap or yields a short year."""


class DateOutOfRangeError(LunisolarError):
    """Raised when no candidate year (or month day) covers the requested date."""


class MonthNotFoundError(LunisolarError, LookupError):
    """Raised when a year has no month with the requested number and leap flag."""


class EphemerisUnavailableError(LunisolarError):
    """Raised when the ephemeris provider fails for an instant."""

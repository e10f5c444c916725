"""Ephemeris capability backed by JPL DE kernels."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import List, Optional, Tuple

import erfa
import numpy as np
import spiceypy as spice
from astropy.time import Time
from spiceypy.utils.exceptions import SpiceyError

from .errors import EphemerisUnavailableError
from .timeutil import format_utc, require_utc

__all__ = ["SpiceEphemeris", "load_ephemeris", "EphemerisError"]

LOGGER = logging.getLogger(__name__)

_LOADED_FILES: Optional[List[str]] = None
_LOAD_LOCK = Lock()


class EphemerisError(RuntimeError):
    """Raised when ephemeris kernels cannot be loaded."""


@dataclass(frozen=True)
class _TimeScales:
    """Terrestrial time of a UTC instant, as a two-part JD and SPICE ET."""

    tt: Tuple[float, float]
    et: float


def load_ephemeris(bsp_path: str) -> List[str]:
    """Load SPK kernels from *bsp_path* using :mod:`spiceypy`.

    Parameters
    ----------
    bsp_path:
        A ``.bsp`` file, or a directory containing one or more of them.

    Returns
    -------
    list[str]
        Sorted list of loaded kernel file names.

    Raises
    ------
    EphemerisError
        If the path is missing or holds no ``.bsp`` files.
    """

    global _LOADED_FILES

    if _LOADED_FILES is not None:
        return _LOADED_FILES

    path = Path(bsp_path).expanduser()
    if path.is_file():
        bsp_files = [path]
    elif path.is_dir():
        bsp_files = sorted(
            file for file in path.iterdir() if file.is_file() and file.suffix.lower() == ".bsp"
        )
    else:
        raise EphemerisError(f"Ephemeris path not found: {path}")
    if not bsp_files:
        raise EphemerisError(f"No .bsp ephemeris files found in directory: {path}")

    with _LOAD_LOCK:
        if _LOADED_FILES is not None:
            return _LOADED_FILES

        loaded: List[str] = []
        for bsp_file in bsp_files:
            try:
                spice.furnsh(str(bsp_file))
            except SpiceyError as exc:
                spice.kclear()
                raise EphemerisError(
                    f"Failed to load ephemeris file '{bsp_file}': {exc}"
                ) from exc
            loaded.append(bsp_file.name)

        _LOADED_FILES = loaded
        LOGGER.info(json.dumps({"event": "ephemeris_loaded", "files": loaded}))
        return loaded


def unload_ephemeris() -> None:
    global _LOADED_FILES

    with _LOAD_LOCK:
        spice.kclear()
        _LOADED_FILES = None


def loaded_files() -> List[str]:
    return list(_LOADED_FILES or [])


def _timescales(instant: datetime) -> _TimeScales:
    """Convert a timezone-aware UTC datetime into TT and ephemeris time."""

    naive_utc = require_utc(instant).replace(tzinfo=None)
    tt = Time(naive_utc, scale="utc").tt
    tt1, tt2 = float(tt.jd1), float(tt.jd2)
    et = (tt1 - erfa.DJ00) * erfa.DAYSEC + tt2 * erfa.DAYSEC
    return _TimeScales(tt=(tt1, tt2), et=et)


def _apparent_longitude_degrees(target: str, times: _TimeScales) -> float:
    """Geocentric apparent ecliptic longitude of *target*, equinox of date."""

    vector, _ = spice.spkpos(target, times.et, "J2000", "LT+S", "EARTH")
    rotation = np.array(erfa.ecm06(*times.tt), dtype=float)
    ecliptic = rotation @ np.array(vector, dtype=float)
    if not np.any(ecliptic[:2]):
        raise EphemerisUnavailableError(f"Degenerate {target} vector encountered")
    dpsi, _ = erfa.nut06a(*times.tt)
    longitude = math.atan2(float(ecliptic[1]), float(ecliptic[0])) + float(dpsi)
    return math.degrees(longitude) % 360.0


class SpiceEphemeris:
    """Sun longitude and Moon phase from loaded DE kernels.

    Light time and stellar aberration come from SPICE (``LT+S``); the
    rotation to the ecliptic of date and the nutation in longitude come from
    ERFA's IAU 2006/2000A models.
    """

    def __init__(self, bsp_path: Optional[str] = None) -> None:
        if bsp_path is not None:
            load_ephemeris(bsp_path)
        elif _LOADED_FILES is None:
            raise EphemerisError("Ephemeris kernels have not been loaded")

    @staticmethod
    def _longitudes(instant: datetime, *targets: str) -> List[float]:
        times = _timescales(instant)
        try:
            return [_apparent_longitude_degrees(target, times) for target in targets]
        except SpiceyError as exc:
            reason = getattr(exc, "short", "") or str(exc)
            raise EphemerisUnavailableError(
                f"No ephemeris coverage at {format_utc(instant)}: {reason}"
            ) from exc

    def solar_longitude_degrees(self, instant: datetime) -> float:
        (sun,) = self._longitudes(instant, "SUN")
        return sun

    def moon_phase(self, instant: datetime) -> float:
        sun, moon = self._longitudes(instant, "SUN", "MOON")
        return ((moon - sun) % 360.0) / 360.0

"""Locating, and if needed downloading, the DE kernel used by the service."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_EPHEMERIS_URL = (
    "https://naif.jpl.nasa.gov/pub/naif/generic_kernels/spk/planets/de440s.bsp"
)
DEFAULT_EPHEMERIS_FILENAME = "de440s.bsp"
DEFAULT_CACHE_DIR = Path.home() / ".lunisolar" / "kernels"


class EphemerisAcquisitionError(RuntimeError):
    """Raised when no usable kernel can be found or fetched."""


def download_kernel(url: str, destination: Path, client: Optional[httpx.Client] = None) -> Path:
    """Stream *url* into *destination*; a partial file is removed on failure."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_suffix(destination.suffix + ".part")
    owns_client = client is None
    http = client or httpx.Client(timeout=httpx.Timeout(120.0, connect=30.0))
    received = 0
    try:
        with http.stream("GET", url) as response:
            response.raise_for_status()
            with partial.open("wb") as handle:
                for chunk in response.iter_bytes(chunk_size=1 << 20):
                    handle.write(chunk)
                    received += len(chunk)
        partial.replace(destination)
    except (httpx.HTTPError, OSError) as exc:
        partial.unlink(missing_ok=True)
        raise EphemerisAcquisitionError(f"Failed to download ephemeris from {url}: {exc}") from exc
    finally:
        if owns_client:
            http.close()
    LOGGER.info(
        json.dumps(
            {
                "event": "ephemeris_downloaded",
                "url": url,
                "destination": str(destination),
                "bytes": received,
            }
        )
    )
    return destination


def ensure_kernel(path: Path, url: str = DEFAULT_EPHEMERIS_URL) -> Path:
    """Return *path* once it holds a kernel.

    A ``.bsp`` path is downloaded when missing. A directory is accepted when
    it already contains a kernel; otherwise the default kernel is fetched into
    it.
    """

    if path.suffix.lower() == ".bsp":
        if path.is_file():
            return path
        if path.exists():
            raise EphemerisAcquisitionError(f"Ephemeris path is not a file: {path}")
        LOGGER.info(json.dumps({"event": "ephemeris_downloading", "url": url, "destination": str(path)}))
        return download_kernel(url, path)

    if path.exists() and not path.is_dir():
        raise EphemerisAcquisitionError(f"Ephemeris file must have .bsp extension: {path}")
    if path.is_dir() and any(path.glob("*.bsp")):
        return path
    destination = path / DEFAULT_EPHEMERIS_FILENAME
    LOGGER.info(json.dumps({"event": "ephemeris_downloading", "url": url, "destination": str(destination)}))
    download_kernel(url, destination)
    return path


def resolve_ephemeris_source(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Kernel path from ``LUNISOLAR_BSP`` or the cache directory."""

    env = os.environ if environ is None else environ
    override = env.get("LUNISOLAR_BSP")
    if override:
        return ensure_kernel(Path(override).expanduser())

    cache_root = Path(env.get("LUNISOLAR_BSP_CACHE_DIR", str(DEFAULT_CACHE_DIR))).expanduser()
    return ensure_kernel(cache_root / DEFAULT_EPHEMERIS_FILENAME)

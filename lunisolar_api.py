"""FastAPI application exposing lunisolar calendar conversions."""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lunisolar.astro import EphemerisError, SpiceEphemeris, load_ephemeris, loaded_files
from lunisolar.config import LunisolarConfig
from lunisolar.convert import LunisolarEngine
from lunisolar.ephemeris import EphemerisAcquisitionError, resolve_ephemeris_source
from lunisolar.errors import (
    DateOutOfRangeError,
    EphemerisUnavailableError,
    LunisolarError,
    MonthNotFoundError,
)
from lunisolar.migration import annotate, apply_migration, preview_migration
from lunisolar.timeutil import utc_day
from models import (
    AffirmationBatch,
    AffirmationBatchResponse,
    AffirmationModel,
    ErrorResponse,
    GregorianQueryParams,
    GregorianResponse,
    HealthResponse,
    LunarInfo,
    LunisolarDateResponse,
    LunisolarQueryParams,
    LunisolarYearResponse,
    MigrationPreviewResponse,
)

logging.basicConfig(level=logging.INFO, format="%(message)s")
LOGGER = logging.getLogger("lunisolar-api")

APP_DESCRIPTION = (
    "Lunisolar calendar conversions with equinox-anchored years and "
    "no-principal-term leap months, computed from JPL DE ephemerides"
)

ENGINE: Optional[LunisolarEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - exercised in integration tests
    global ENGINE
    try:
        source_path = resolve_ephemeris_source()
    except EphemerisAcquisitionError as exc:
        LOGGER.error(json.dumps({"event": "ephemeris_acquire_failed", "error": str(exc)}))
        raise
    LOGGER.info(json.dumps({"event": "startup", "ephemeris_source": str(source_path)}))
    try:
        load_ephemeris(str(source_path))
    except EphemerisError as exc:
        LOGGER.error(json.dumps({"event": "ephemeris_load_failed", "error": str(exc)}))
        raise
    ENGINE = LunisolarEngine(SpiceEphemeris(), LunisolarConfig.from_env())
    yield
    ENGINE = None


app = FastAPI(
    title="Lunisolar API",
    description=APP_DESCRIPTION,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def get_engine() -> LunisolarEngine:
    if ENGINE is None:
        raise HTTPException(status_code=503, detail="Ephemeris has not been loaded")
    return ENGINE


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    payload = ErrorResponse(code=code, error=message)
    LOGGER.error(json.dumps({"event": "error", "code": code, "message": message}))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = ", ".join(error["msg"] for error in exc.errors())
    return _error_response(422, "validation_error", messages)


@app.exception_handler(ValidationError)
async def model_validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    messages = ", ".join(error["msg"] for error in exc.errors())
    return _error_response(422, "validation_error", messages)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        message = detail.get("error") or detail.get("message") or str(detail)
    elif isinstance(detail, list):
        message = ", ".join(str(item) for item in detail)
    else:
        message = str(detail)
    return _error_response(exc.status_code, f"http_{exc.status_code}", message)


@app.exception_handler(LunisolarError)
async def lunisolar_exception_handler(request: Request, exc: LunisolarError) -> JSONResponse:
    if isinstance(exc, MonthNotFoundError):
        return _error_response(404, "month_not_found", str(exc))
    if isinstance(exc, DateOutOfRangeError):
        return _error_response(400, "date_out_of_range", str(exc))
    if isinstance(exc, EphemerisUnavailableError):
        return _error_response(503, "ephemeris_unavailable", str(exc))
    return _error_response(500, type(exc).__name__, str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled exception", exc_info=exc)
    return _error_response(500, "internal_error", "Unhandled server error")


def _log_request(event: str, started: float, **fields) -> None:
    duration_ms = (time.perf_counter() - started) * 1000.0
    LOGGER.info(json.dumps({"event": event, **fields, "duration_ms": round(duration_ms, 3)}))


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    files = loaded_files()
    config = ENGINE.config.model_dump(mode="json", by_alias=True) if ENGINE else {}
    return HealthResponse(ok=True, ephemeris_loaded=bool(files), files=files, config=config)


@app.get(
    "/lunisolar",
    response_model=LunisolarDateResponse,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def lunisolar_endpoint(
    params: LunisolarQueryParams = Depends(),
    engine: LunisolarEngine = Depends(get_engine),
) -> LunisolarDateResponse:
    started = time.perf_counter()
    lunar = engine.to_lunisolar(params.instant)
    month = engine.year(lunar.year_index).months[lunar.month_index]
    response = LunisolarDateResponse(
        instant=params.instant,
        utc_day=utc_day(params.instant),
        lunar=LunarInfo.from_core(lunar),
        month_start=month.start,
        month_length_days=month.length_days,
    )
    _log_request("lunisolar", started, instant=params.instant.isoformat(), year=lunar.year_index)
    return response


@app.get(
    "/gregorian",
    response_model=GregorianResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def gregorian_endpoint(
    params: GregorianQueryParams = Depends(),
    engine: LunisolarEngine = Depends(get_engine),
) -> GregorianResponse:
    started = time.perf_counter()
    instant = engine.from_lunisolar(params.year, params.month, params.day, params.leap)
    response = GregorianResponse(
        instant=instant,
        utc_day=utc_day(instant),
        lunar=LunarInfo.from_core(engine.to_lunisolar(instant)),
    )
    _log_request(
        "gregorian", started, year=params.year, month=params.month, day=params.day, leap=params.leap
    )
    return response


@app.get("/years/{year}", response_model=LunisolarYearResponse)
def year_endpoint(
    year: int = Path(..., ge=1900, le=2200),
    engine: LunisolarEngine = Depends(get_engine),
) -> LunisolarYearResponse:
    started = time.perf_counter()
    response = LunisolarYearResponse.from_core(engine.year(year))
    _log_request("year", started, year=year, months=len(response.months))
    return response


@app.post("/affirmations/annotate", response_model=AffirmationBatchResponse)
def annotate_endpoint(
    batch: AffirmationBatch,
    engine: LunisolarEngine = Depends(get_engine),
) -> AffirmationBatchResponse:
    started = time.perf_counter()
    events = annotate([event.to_core() for event in batch.events], engine)
    _log_request("annotate", started, events=len(events))
    return AffirmationBatchResponse(events=[AffirmationModel.from_core(event) for event in events])


@app.post("/affirmations/migration/preview", response_model=MigrationPreviewResponse)
def migration_preview_endpoint(
    batch: AffirmationBatch,
    engine: LunisolarEngine = Depends(get_engine),
) -> MigrationPreviewResponse:
    started = time.perf_counter()
    preview = preview_migration([event.to_core() for event in batch.events], engine)
    _log_request(
        "migration_preview", started, migrated=len(preview.migrated), errors=len(preview.errors)
    )
    return MigrationPreviewResponse.from_core(preview)


@app.post("/affirmations/migration/apply", response_model=AffirmationBatchResponse)
def migration_apply_endpoint(preview: MigrationPreviewResponse) -> AffirmationBatchResponse:
    events = apply_migration(preview.to_core())
    return AffirmationBatchResponse(events=[AffirmationModel.from_core(event) for event in events])

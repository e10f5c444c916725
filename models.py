"""Pydantic models for API requests and responses."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lunisolar.calendar import LunarMonth, LunisolarYear
from lunisolar.convert import LunisolarDate
from lunisolar.migration import (
    AffirmationEvent,
    MatchKind,
    MigratedEvent,
    MigrationError,
    MigrationPreview,
)


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("instant must include a UTC offset")
    return value


class LunisolarQueryParams(BaseModel):
    """Validated query parameters for the ``/lunisolar`` endpoint."""

    instant: datetime = Field(..., description="UTC instant (ISO-8601 with offset)")

    @field_validator("instant")
    def validate_instant(cls, value: datetime) -> datetime:
        return _require_aware(value)


class GregorianQueryParams(BaseModel):
    """Validated query parameters for the ``/gregorian`` endpoint."""

    year: int = Field(..., ge=1900, le=2200, description="Lunisolar year index")
    month: int = Field(..., ge=1, le=13, description="Display month number")
    day: int = Field(..., ge=1, le=30, description="Day of the lunar month")
    leap: bool = Field(False, description="Whether the month is the leap month")


class LunarInfo(BaseModel):
    """Lunisolar coordinates, relative to the year they were derived from."""

    year_index: int
    month_index: int = Field(..., ge=0)
    display_month_number: int = Field(..., ge=1)
    month_day: int = Field(..., ge=1, le=30)
    is_leap: bool = False

    @classmethod
    def from_core(cls, value: LunisolarDate) -> "LunarInfo":
        return cls(
            year_index=value.year_index,
            month_index=value.month_index,
            display_month_number=value.display_month_number,
            month_day=value.month_day,
            is_leap=value.is_leap,
        )

    def to_core(self) -> LunisolarDate:
        return LunisolarDate(
            year_index=self.year_index,
            month_index=self.month_index,
            display_month_number=self.display_month_number,
            month_day=self.month_day,
            is_leap=self.is_leap,
        )


class LunisolarDateResponse(BaseModel):
    ok: bool = True
    instant: datetime
    utc_day: date
    lunar: LunarInfo
    month_start: datetime
    month_length_days: int


class GregorianResponse(BaseModel):
    ok: bool = True
    instant: datetime
    utc_day: date
    lunar: LunarInfo


class LunarMonthModel(BaseModel):
    start: datetime
    end: datetime
    length_days: int
    contains_principal_term: bool
    principal_term_angle: Optional[int] = None
    is_leap: bool
    display_month_number: int

    @classmethod
    def from_core(cls, month: LunarMonth) -> "LunarMonthModel":
        return cls(
            start=month.start,
            end=month.end,
            length_days=month.length_days,
            contains_principal_term=month.contains_principal_term,
            principal_term_angle=month.principal_term.angle if month.principal_term else None,
            is_leap=month.is_leap,
            display_month_number=month.display_month_number,
        )


class LunisolarYearResponse(BaseModel):
    ok: bool = True
    year_index: int
    equinox: datetime
    year_start: datetime
    anchor_source: str
    months: List[LunarMonthModel]

    @classmethod
    def from_core(cls, year: LunisolarYear) -> "LunisolarYearResponse":
        return cls(
            year_index=year.year_index,
            equinox=year.equinox,
            year_start=year.year_start,
            anchor_source=year.anchor_source,
            months=[LunarMonthModel.from_core(month) for month in year.months],
        )


class AffirmationModel(BaseModel):
    """An affirmation as stored by the calling application.

    Unknown fields are kept and echoed back untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    date: Optional[Union[datetime, str]] = None
    text: Optional[str] = None
    lunar_info: Optional[LunarInfo] = Field(None, alias="lunarInfo")

    def to_core(self) -> AffirmationEvent:
        return AffirmationEvent(
            id=self.id,
            date=self.date,
            text=self.text,
            lunar_info=self.lunar_info.to_core() if self.lunar_info else None,
            extra=dict(self.model_extra or {}),
        )

    @classmethod
    def from_core(cls, event: AffirmationEvent) -> "AffirmationModel":
        return cls(
            id=event.id,
            date=event.date,
            text=event.text,
            lunar_info=LunarInfo.from_core(event.lunar_info) if event.lunar_info else None,
            **event.extra,
        )


class AffirmationBatch(BaseModel):
    events: List[AffirmationModel]


class AffirmationBatchResponse(BaseModel):
    ok: bool = True
    events: List[AffirmationModel]


class MigratedItem(BaseModel):
    position: int = Field(..., ge=0)
    event: AffirmationModel
    original_date: datetime
    proposed_date: datetime
    source_info: LunarInfo
    proposed_info: Optional[LunarInfo] = None
    match: MatchKind
    day_clamped: bool = False
    changed: bool = False

    @classmethod
    def from_core(cls, item: MigratedEvent) -> "MigratedItem":
        return cls(
            position=item.position,
            event=AffirmationModel.from_core(item.event),
            original_date=item.original_date,
            proposed_date=item.proposed_date,
            source_info=LunarInfo.from_core(item.source_info),
            proposed_info=LunarInfo.from_core(item.proposed_info) if item.proposed_info else None,
            match=item.match,
            day_clamped=item.day_clamped,
            changed=item.changed,
        )

    def to_core(self) -> MigratedEvent:
        return MigratedEvent(
            position=self.position,
            event=self.event.to_core(),
            original_date=self.original_date,
            proposed_date=self.proposed_date,
            source_info=self.source_info.to_core(),
            proposed_info=self.proposed_info.to_core() if self.proposed_info else None,
            match=self.match,
            day_clamped=self.day_clamped,
        )


class MigrationErrorItem(BaseModel):
    position: int = Field(..., ge=0)
    id: Optional[str] = None
    error: str
    event: Optional[AffirmationModel] = None

    @classmethod
    def from_core(cls, error: MigrationError) -> "MigrationErrorItem":
        return cls(
            position=error.position,
            id=error.event_id,
            error=error.reason,
            event=AffirmationModel.from_core(error.event) if error.event else None,
        )

    def to_core(self) -> MigrationError:
        return MigrationError(
            position=self.position,
            event_id=self.id,
            reason=self.error,
            event=self.event.to_core() if self.event else None,
        )


class MigrationPreviewResponse(BaseModel):
    ok: bool = True
    migrated: List[MigratedItem]
    errors: List[MigrationErrorItem]

    @classmethod
    def from_core(cls, preview: MigrationPreview) -> "MigrationPreviewResponse":
        return cls(
            migrated=[MigratedItem.from_core(item) for item in preview.migrated],
            errors=[MigrationErrorItem.from_core(error) for error in preview.errors],
        )

    def to_core(self) -> MigrationPreview:
        return MigrationPreview(
            migrated=tuple(item.to_core() for item in self.migrated),
            errors=tuple(error.to_core() for error in self.errors),
        )


class HealthResponse(BaseModel):
    """Health-check response."""

    ok: bool = True
    ephemeris_loaded: bool
    files: List[str]
    config: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error payload."""

    ok: bool = False
    code: str
    error: str

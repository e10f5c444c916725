"""Remapping recorded affirmations onto a recomputed lunisolar calendar.

Migration is best effort per event: an event whose date cannot be parsed, or
whose year cannot be built, lands in the error list while the rest of the
batch carries on.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .calendar import LunisolarYear
from .convert import LunisolarDate, LunisolarEngine
from .errors import LunisolarError
from .timeutil import parse_instant

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AffirmationEvent:
    """A caller-owned event. ``text`` and ``extra`` are carried, never read."""

    id: str
    date: Any
    text: Optional[str] = None
    lunar_info: Optional[LunisolarDate] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class MatchKind(str, Enum):
    exact = "exact"
    month_only = "month_only"
    unmatched = "unmatched"


@dataclass(frozen=True)
class MigratedEvent:
    position: int
    event: AffirmationEvent
    original_date: datetime
    proposed_date: datetime
    source_info: LunisolarDate
    proposed_info: Optional[LunisolarDate]
    match: MatchKind
    day_clamped: bool = False

    @property
    def changed(self) -> bool:
        return self.proposed_date != self.original_date


@dataclass(frozen=True)
class MigrationError:
    position: int
    event_id: Optional[str]
    reason: str
    event: Optional[AffirmationEvent] = None


@dataclass(frozen=True)
class MigrationPreview:
    migrated: Tuple[MigratedEvent, ...]
    errors: Tuple[MigrationError, ...]


def annotate(events: Iterable[AffirmationEvent], engine: LunisolarEngine) -> List[AffirmationEvent]:
    """Return copies of *events* with ``lunar_info`` derived from their dates."""

    annotated: List[AffirmationEvent] = []
    for event in events:
        try:
            info: Optional[LunisolarDate] = engine.to_lunisolar(parse_instant(event.date))
        except (ValueError, LunisolarError) as exc:
            LOGGER.warning(
                json.dumps({"event": "annotate_skipped", "id": event.id, "error": str(exc)})
            )
            info = None
        annotated.append(replace(event, lunar_info=info))
    return annotated


def _match_month(year: LunisolarYear, info: LunisolarDate) -> Tuple[Optional[int], MatchKind]:
    exact = year.find_month(info.display_month_number, info.is_leap)
    if exact is not None:
        return exact, MatchKind.exact
    # Losing leap-exactness beats dropping the event.
    loose = year.find_month(info.display_month_number, not info.is_leap)
    if loose is not None:
        return loose, MatchKind.month_only
    return None, MatchKind.unmatched


def _migrate_one(position: int, event: AffirmationEvent, engine: LunisolarEngine) -> MigratedEvent:
    original = parse_instant(event.date)
    source = event.lunar_info or engine.to_lunisolar(original)
    year = engine.year(source.year_index)
    month_index, match = _match_month(year, source)
    if month_index is None:
        return MigratedEvent(
            position=position,
            event=event,
            original_date=original,
            proposed_date=original,
            source_info=source,
            proposed_info=None,
            match=match,
        )
    month = year.months[month_index]
    month_day = min(source.month_day, month.length_days)
    proposed = month.start + timedelta(days=month_day - 1)
    return MigratedEvent(
        position=position,
        event=event,
        original_date=original,
        proposed_date=proposed,
        source_info=source,
        proposed_info=LunisolarDate(
            year_index=year.year_index,
            month_index=month_index,
            display_month_number=month.display_month_number,
            month_day=month_day,
            is_leap=month.is_leap,
        ),
        match=match,
        day_clamped=month_day != source.month_day,
    )


def preview_migration(events: Sequence[AffirmationEvent], engine: LunisolarEngine) -> MigrationPreview:
    """Propose new dates that keep each event's lunar coordinates.

    *engine* should reflect the recomputed calendar (see
    :meth:`LunisolarEngine.rebuilt`).
    """

    migrated: List[MigratedEvent] = []
    errors: List[MigrationError] = []
    for position, event in enumerate(events):
        try:
            migrated.append(_migrate_one(position, event, engine))
        except ValueError as exc:
            errors.append(MigrationError(position, event.id, str(exc), event))
        except LunisolarError as exc:
            errors.append(
                MigrationError(position, event.id, f"{type(exc).__name__}: {exc}", event)
            )
    LOGGER.info(
        json.dumps(
            {
                "event": "migration_preview",
                "events": len(events),
                "migrated": len(migrated),
                "changed": sum(1 for item in migrated if item.changed),
                "errors": len(errors),
            }
        )
    )
    return MigrationPreview(migrated=tuple(migrated), errors=tuple(errors))


def apply_migration(preview: MigrationPreview) -> List[AffirmationEvent]:
    """Events with proposed dates applied, in their original order.

    Pure transform; events from the error list are returned untouched.
    """

    placed: List[Tuple[int, AffirmationEvent]] = []
    for item in preview.migrated:
        placed.append(
            (
                item.position,
                replace(
                    item.event,
                    date=item.proposed_date,
                    lunar_info=item.proposed_info or item.source_info,
                ),
            )
        )
    for error in preview.errors:
        if error.event is not None:
            placed.append((error.position, error.event))
    placed.sort(key=lambda pair: pair[0])
    return [event for _, event in placed]

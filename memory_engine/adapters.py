"""
Record Adapters
===============

One adapter per source record type. An adapter knows how to read a user's
recent rows (bounded, most recent first) and how to split a row into
structural and sensitive fields. Adapters never redact; that is the
Visibility Policy's job.
"""

from datetime import datetime, time, timedelta
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from memory_engine.visibility import SourceRecord, Visibility
import models


# (start, end), both inclusive. A midnight end includes that whole day.
Window = Tuple[datetime, datetime]


class RecordAdapter:
    """Base adapter: subclasses declare the model, columns and field split."""

    category: str = ""
    model = None
    date_column: str = "date"
    date_only: bool = False  # column stores a calendar date, not a timestamp
    default_limit: int = 30

    structural_fields: Tuple[str, ...] = ()
    sensitive_fields: Tuple[str, ...] = ()

    def __init__(self, db: Session):
        self.db = db

    def fetch_recent(
        self,
        user_id: int,
        limit: int,
        window: Optional[Window] = None
    ) -> List[Any]:
        """Get up to `limit` rows for the user, newest first, optionally inside a window."""
        column = getattr(self.model, self.date_column)
        query = self.db.query(self.model).filter(self.model.user_id == user_id)

        if window:
            start, end = self._bounds(window)
            query = query.filter(column >= start, column <= end)

        return query.order_by(column.desc(), self.model.id.desc()).limit(limit).all()

    def _bounds(self, window: Window):
        start, end = window
        if self.date_only:
            return _as_date(start), _as_date(end)
        return start, _end_of_day_if_midnight(end)

    def visibility_of(self, row) -> Any:
        """Stored tag for the row. Record types without their own tag are FULL_ACCESS."""
        return Visibility.FULL_ACCESS

    def project(self, row) -> SourceRecord:
        return SourceRecord(
            category=self.category,
            record_id=row.id,
            user_id=row.user_id,
            occurred_at=getattr(row, self.date_column),
            visibility=self.visibility_of(row),
            structural={name: getattr(row, name) for name in self.structural_fields},
            sensitive={name: getattr(row, name) for name in self.sensitive_fields},
        )


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def _end_of_day_if_midnight(value):
    """A bare-date end (midnight) covers that whole day, as it does for date-only columns."""
    if isinstance(value, datetime) and value.time() == time.min:
        return value + timedelta(days=1) - timedelta(microseconds=1)
    return value


class WorkoutAdapter(RecordAdapter):
    category = "workouts"
    model = models.Workout
    default_limit = 30

    structural_fields = (
        "date", "title", "type", "duration_min", "distance_km",
        "tss", "planned", "completed",
    )
    sensitive_fields = ("notes",)


class MetricAdapter(RecordAdapter):
    category = "metrics"
    model = models.MetricDaily
    date_only = True
    default_limit = 14

    structural_fields = (
        "date", "readiness_score", "compliance_score", "burnout_risk",
        "ctl", "atl", "tsb",
    )


class CheckInAdapter(RecordAdapter):
    category = "check_ins"
    model = models.DailyCheckIn
    date_only = True
    default_limit = 14

    structural_fields = (
        "date", "sleep_duration", "sleep_quality", "physical_fatigue",
        "mental_readiness", "motivation", "stress_level",
        "readiness_score", "ai_decision",
    )
    sensitive_fields = ("notes",)

    def visibility_of(self, row) -> Any:
        return row.notes_visibility


class FeedbackAdapter(RecordAdapter):
    category = "feedback"
    model = models.PostWorkoutFeedback
    date_column = "created_at"
    default_limit = 200

    structural_fields = (
        "created_at", "workout_id", "perceived_difficulty", "vs_planned",
        "enjoyment", "mental_state",
    )
    sensitive_fields = ("pain_or_discomfort", "comment")

    def visibility_of(self, row) -> Any:
        # Opt-out feedback is excluded outright
        return Visibility.FULL_ACCESS if row.visible_to_ai is True else Visibility.HIDDEN


class DiaryAdapter(RecordAdapter):
    category = "diary"
    model = models.DiaryEntry
    date_only = True
    default_limit = 30

    structural_fields = (
        "date", "mood", "energy", "sleep_hrs", "sleep_qual",
        "stress", "soreness", "motivation",
    )
    sensitive_fields = ("notes",)

    def visibility_of(self, row) -> Any:
        return row.visibility_level


DEFAULT_ADAPTERS = (
    WorkoutAdapter,
    MetricAdapter,
    CheckInAdapter,
    FeedbackAdapter,
    DiaryAdapter,
)


def sensitive_keys(adapters=DEFAULT_ADAPTERS) -> frozenset:
    """Every field name any adapter classifies as sensitive."""
    keys = set()
    for adapter in adapters:
        keys.update(adapter.sensitive_fields)
    return frozenset(keys)

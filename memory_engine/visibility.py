"""
Visibility Policy
=================

The single place where per-record visibility is turned into redaction.

- FULL_ACCESS:  structural and sensitive fields pass through unchanged
- METRICS_ONLY: structural fields pass, sensitive fields become ABSENT
- HIDDEN:       record is dropped entirely

Any tag not in the table fails closed to HIDDEN.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from memory_engine.errors import PrivacyLeakError

logger = logging.getLogger(__name__)


class Visibility(str, Enum):
    FULL_ACCESS = "FULL_ACCESS"
    METRICS_ONLY = "METRICS_ONLY"
    HIDDEN = "HIDDEN"


# Older diary rows were written before the tag rename
_LEGACY_TAGS = {
    "FULL_AI_ACCESS": Visibility.FULL_ACCESS,
}


class _Absent:
    """Marker for a sensitive value withheld by policy. Serializes as null."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class SourceRecord:
    """A raw record split into structural and sensitive fields by its adapter."""
    category: str
    record_id: int
    user_id: int
    occurred_at: Optional[datetime]
    visibility: Any  # raw tag as stored
    structural: Dict[str, Any] = field(default_factory=dict)
    sensitive: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RedactedRecord:
    """A context-safe projection of one SourceRecord."""
    category: str
    record_id: int
    occurred_at: Optional[datetime]
    visibility: Visibility
    fields: Dict[str, Any]
    redacted_fields: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.record_id,
            "visibility": self.visibility.value,
        }
        for key, value in self.fields.items():
            out[key] = None if value is ABSENT else _jsonable(value)
        out["redacted_fields"] = list(self.redacted_fields)
        return out


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def resolve_visibility(tag: Any) -> Visibility:
    """Normalise a stored tag. Unknown or missing tags resolve to HIDDEN."""
    if isinstance(tag, Visibility):
        return tag
    if isinstance(tag, str):
        if tag in _LEGACY_TAGS:
            return _LEGACY_TAGS[tag]
        try:
            return Visibility(tag)
        except ValueError:
            pass
    return Visibility.HIDDEN


def _pass_through(record: SourceRecord, visibility: Visibility) -> RedactedRecord:
    fields = dict(record.structural)
    fields.update(record.sensitive)
    return RedactedRecord(
        category=record.category,
        record_id=record.record_id,
        occurred_at=record.occurred_at,
        visibility=visibility,
        fields=fields,
    )


def _metrics_only(record: SourceRecord, visibility: Visibility) -> RedactedRecord:
    fields = dict(record.structural)
    for key in record.sensitive:
        fields[key] = ABSENT
    return RedactedRecord(
        category=record.category,
        record_id=record.record_id,
        occurred_at=record.occurred_at,
        visibility=visibility,
        fields=fields,
        redacted_fields=tuple(record.sensitive.keys()),
    )


def _drop(record: SourceRecord, visibility: Visibility) -> None:
    return None


_REDACTORS: Dict[Visibility, Callable[[SourceRecord, Visibility], Optional[RedactedRecord]]] = {
    Visibility.FULL_ACCESS: _pass_through,
    Visibility.METRICS_ONLY: _metrics_only,
    Visibility.HIDDEN: _drop,
}


def redact(record: SourceRecord, tag: Any) -> Optional[RedactedRecord]:
    """Apply the policy for `tag` to `record`. Returns None when the record is dropped."""
    visibility = resolve_visibility(tag)
    return _REDACTORS[visibility](record, visibility)


# ==============================================================================
# LEAK VERIFICATION
# ==============================================================================

def _is_populated(value: Any) -> bool:
    if value is None or value is ABSENT:
        return False
    if isinstance(value, str):
        return len(value.strip()) > 0
    return True


def assert_no_sensitive_leak(payload: Any, sensitive_keys: Iterable[str]) -> None:
    """
    Walk a serialized payload and fail if any sensitive key carries a value
    outside a FULL_ACCESS record.

    Objects with a `visibility` key set the scope for everything nested in
    them; values outside any record are treated as not FULL_ACCESS.
    """
    keys = frozenset(sensitive_keys)

    def walk(value: Any, path: List[str], scope: Visibility) -> None:
        if isinstance(value, dict):
            if "visibility" in value:
                scope = resolve_visibility(value["visibility"])
            for key, child in value.items():
                child_path = path + [str(key)]
                if key in keys and _is_populated(child) and scope is not Visibility.FULL_ACCESS:
                    location = ".".join(child_path)
                    logger.error(f"Privacy verifier rejected payload at {location}")
                    raise PrivacyLeakError(location)
                walk(child, child_path, scope)
        elif isinstance(value, (list, tuple)):
            for i, child in enumerate(value):
                walk(child, path + [str(i)], scope)

    walk(payload, [], Visibility.HIDDEN)

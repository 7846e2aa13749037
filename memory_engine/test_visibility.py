"""
Visibility Policy Tests
=======================
"""

from datetime import date

import pytest

from memory_engine.errors import PrivacyLeakError
from memory_engine.visibility import (
    ABSENT, SourceRecord, Visibility, assert_no_sensitive_leak, redact, resolve_visibility
)


def _diary(tag):
    return SourceRecord(
        category="diary",
        record_id=7,
        user_id=1,
        occurred_at=date(2025, 3, 2),
        visibility=tag,
        structural={"date": date(2025, 3, 2), "mood": 2},
        sensitive={"notes": "Argument with my partner"},
    )


# ==============================================================================
# Tag resolution
# ==============================================================================

class TestResolveVisibility:

    @pytest.mark.parametrize("tag,expected", [
        ("FULL_ACCESS", Visibility.FULL_ACCESS),
        ("METRICS_ONLY", Visibility.METRICS_ONLY),
        ("HIDDEN", Visibility.HIDDEN),
        ("FULL_AI_ACCESS", Visibility.FULL_ACCESS),
        (Visibility.METRICS_ONLY, Visibility.METRICS_ONLY),
    ])
    def test_known_tags(self, tag, expected):
        """Scenario: known and legacy tags resolve to their level."""
        assert resolve_visibility(tag) is expected

    @pytest.mark.parametrize("tag", ["PRIVATE", "full_access", "", None, 3])
    def test_unknown_tags_fail_closed(self, tag):
        """Scenario: anything else resolves to HIDDEN."""
        assert resolve_visibility(tag) is Visibility.HIDDEN


# ==============================================================================
# Redaction
# ==============================================================================

class TestRedact:

    def test_full_access_passes_everything(self):
        """Scenario: FULL_ACCESS keeps every field."""
        out = redact(_diary("FULL_ACCESS"), "FULL_ACCESS")

        assert out.visibility is Visibility.FULL_ACCESS
        assert out.fields["notes"] == "Argument with my partner"
        assert out.fields["mood"] == 2
        assert out.redacted_fields == ()

    def test_metrics_only_withholds_sensitive_fields(self):
        """Scenario: METRICS_ONLY keeps scores and nulls the notes."""
        out = redact(_diary("METRICS_ONLY"), "METRICS_ONLY")

        assert out.fields["notes"] is ABSENT
        assert out.fields["mood"] == 2
        assert out.redacted_fields == ("notes",)

        as_dict = out.to_dict()
        assert as_dict["notes"] is None
        assert as_dict["redacted_fields"] == ["notes"]
        assert as_dict["date"] == "2025-03-02"
        assert "Argument" not in str(as_dict)

    def test_hidden_drops_record(self):
        """Scenario: HIDDEN drops the record."""
        assert redact(_diary("HIDDEN"), "HIDDEN") is None

    def test_unknown_tag_drops_record(self):
        """Scenario: an unknown tag drops the record."""
        assert redact(_diary("SOMETHING_NEW"), "SOMETHING_NEW") is None

    def test_legacy_tag_is_full_access(self):
        """Scenario: FULL_AI_ACCESS is reported as FULL_ACCESS."""
        out = redact(_diary("FULL_AI_ACCESS"), "FULL_AI_ACCESS")
        assert out.visibility is Visibility.FULL_ACCESS
        assert out.to_dict()["visibility"] == "FULL_ACCESS"

    def test_absent_is_falsy_singleton(self):
        """Scenario: ABSENT is a single falsy marker."""
        assert not ABSENT
        assert repr(ABSENT) == "ABSENT"
        assert type(ABSENT)() is ABSENT


# ==============================================================================
# Leak verification
# ==============================================================================

class TestLeakVerifier:

    KEYS = {"notes", "comment"}

    def test_full_access_record_may_carry_sensitive_values(self):
        """Scenario: notes inside a FULL_ACCESS record are allowed."""
        payload = {"categories": {"diary": [{"id": 1, "visibility": "FULL_ACCESS", "notes": "ok"}]}}
        assert_no_sensitive_leak(payload, self.KEYS)

    def test_metrics_only_record_with_value_is_rejected(self):
        """Scenario: notes inside a METRICS_ONLY record are a leak, reported by path."""
        payload = {"categories": {"diary": [{"id": 1, "visibility": "METRICS_ONLY", "notes": "leak"}]}}

        with pytest.raises(PrivacyLeakError) as exc:
            assert_no_sensitive_leak(payload, self.KEYS)
        assert exc.value.path == "categories.diary.0.notes"

    def test_nested_value_inherits_record_scope(self):
        """Scenario: nested values inherit the record's visibility."""
        payload = [{"visibility": "METRICS_ONLY", "extra": {"meta": [{"comment": "leak"}]}}]

        with pytest.raises(PrivacyLeakError):
            assert_no_sensitive_leak(payload, self.KEYS)

    def test_value_outside_any_record_is_rejected(self):
        """Scenario: a sensitive value outside any record is a leak."""
        with pytest.raises(PrivacyLeakError):
            assert_no_sensitive_leak({"notes": "stray"}, self.KEYS)

    def test_null_and_blank_values_pass(self):
        """Scenario: null, blank and ABSENT values are not leaks."""
        payload = [
            {"visibility": "METRICS_ONLY", "notes": None},
            {"visibility": "METRICS_ONLY", "notes": "   "},
            {"notes": ABSENT},
        ]
        assert_no_sensitive_leak(payload, self.KEYS)

"""
Context Builder Tests
=====================

Redaction across every record type, bounded categories and partial results.
"""

import json
import time
from datetime import date, datetime

import pytest

import models
from memory_engine.adapters import DEFAULT_ADAPTERS, DiaryAdapter, WorkoutAdapter
from memory_engine.context_builder import (
    CONTEXT_VERSION, ContextBuilder, ContextConfig, run_concurrently
)
from memory_engine.memory_store import MemoryStore


NOW = datetime(2025, 3, 4, 8, 0)


def _builder(session_factory, adapters=DEFAULT_ADAPTERS, **config):
    return ContextBuilder(session_factory, ContextConfig(**config), adapters, clock=lambda: NOW)


class BrokenDiaryAdapter(DiaryAdapter):
    def fetch_recent(self, user_id, limit, window=None):
        raise RuntimeError("diary replica down")


class SlowWorkoutAdapter(WorkoutAdapter):
    def fetch_recent(self, user_id, limit, window=None):
        time.sleep(2.0)
        return super().fetch_recent(user_id, limit, window)


# ==============================================================================
# Redaction
# ==============================================================================

class TestContextRedaction:

    def test_diary_visibility_mix(self, session_factory, seeded_user):
        """Scenario: FULL_ACCESS notes pass, METRICS_ONLY notes become null, HIDDEN entries are counted and dropped."""
        context = _builder(session_factory).build(seeded_user.id)

        diary = context.to_dict()["categories"]["diary"]
        by_date = {row["date"]: row for row in diary}

        assert set(by_date) == {"2025-03-01", "2025-03-02"}
        assert by_date["2025-03-01"]["notes"] == "Felt strong on the hills"
        assert by_date["2025-03-02"]["notes"] is None
        assert by_date["2025-03-02"]["redacted_fields"] == ["notes"]
        assert by_date["2025-03-02"]["mood"] == 3
        assert context.excluded_hidden["diary"] == 1

    def test_hidden_and_withheld_text_never_serialized(self, session_factory, seeded_user):
        """Scenario: no withheld free text appears anywhere in the serialized context."""
        payload = json.dumps(_builder(session_factory).build(seeded_user.id).to_dict())

        assert "Therapy session notes" not in payload
        assert "Argument with my partner" not in payload
        assert "Slept badly" not in payload
        assert "Shin pain" not in payload
        assert "Do not share" not in payload

    def test_hidden_record_ids_absent(self, session_factory, db, seeded_user):
        """Scenario: a HIDDEN diary entry's id never reaches the context."""
        hidden = db.query(models.DiaryEntry).filter(models.DiaryEntry.visibility_level == "HIDDEN").one()

        context = _builder(session_factory).build(seeded_user.id)

        assert hidden.id not in [r.record_id for r in context.categories["diary"]]

    def test_unknown_and_legacy_tags(self, session_factory, make_user, add_diary):
        """Scenario: FULL_AI_ACCESS reads as FULL_ACCESS and an unknown tag hides the entry."""
        user = make_user()
        add_diary(user.id, date(2025, 3, 1), "legacy ok", "FULL_AI_ACCESS")
        add_diary(user.id, date(2025, 3, 2), "unknown tag", "FRIENDS_ONLY")

        context = _builder(session_factory).build(user.id)

        notes = [r.fields["notes"] for r in context.categories["diary"]]
        assert notes == ["legacy ok"]
        assert context.excluded_hidden["diary"] == 1

    def test_other_record_types(self, session_factory, seeded_user):
        """Scenario: workouts, metrics, check-ins and opted-out feedback follow their own tags."""
        categories = _builder(session_factory).build(seeded_user.id).to_dict()["categories"]

        assert categories["workouts"][0]["notes"] == "Left knee twinge"
        assert categories["metrics"][0]["readiness_score"] == 71
        assert categories["check_ins"][0]["notes"] is None
        assert categories["check_ins"][0]["sleep_quality"] == 4
        assert categories["feedback"] == []

    def test_other_users_records_not_included(self, session_factory, seeded_user, make_user, add_diary):
        """Scenario: records of another user never appear."""
        other = make_user("other@example.com")
        add_diary(other.id, date(2025, 3, 1), "someone else's diary")

        payload = json.dumps(_builder(session_factory).build(seeded_user.id).to_dict())

        assert "someone else's diary" not in payload


# ==============================================================================
# Shape and bounds
# ==============================================================================

class TestContextShape:

    def test_envelope(self, session_factory, seeded_user):
        """Scenario: version, user, timestamp and category keys are present on a full build."""
        out = _builder(session_factory).build(seeded_user.id).to_dict()

        assert out["context_version"] == CONTEXT_VERSION
        assert out["user_id"] == seeded_user.id
        assert out["generated_at"] == NOW.isoformat()
        assert out["partial"] is False
        assert out["omitted"] == []
        assert set(out["categories"]) == {"workouts", "metrics", "check_ins", "feedback", "diary"}

    def test_recency_order_and_cap(self, session_factory, make_user, add_diary):
        """Scenario: a category keeps newest-first order and stops at the cap."""
        user = make_user()
        for day in range(1, 11):
            add_diary(user.id, date(2025, 3, day), f"day {day}")

        context = _builder(session_factory, category_cap=3).build(user.id)

        assert [r.fields["notes"] for r in context.categories["diary"]] == ["day 10", "day 9", "day 8"]

    def test_active_memories_only(self, session_factory, db, make_user):
        """Scenario: superseded memories are left out of the context."""
        user = make_user()
        store = MemoryStore(db)
        old = store.create_memory(user.id, "LONG_TERM", "PREFERENCE", "Old", "old summary")
        new = store.create_memory(user.id, "LONG_TERM", "PREFERENCE", "New", "new summary",
                                  supersedes_id=old.id)

        context = _builder(session_factory).build(user.id)

        assert [m["id"] for m in context.memories] == [new.id]
        assert "source_ids_json" not in context.memories[0]

    def test_empty_user(self, session_factory, make_user):
        """Scenario: a user with no records gets empty categories, not a partial result."""
        user = make_user()
        out = _builder(session_factory).build(user.id).to_dict()

        assert out["partial"] is False
        assert all(rows == [] for rows in out["categories"].values())
        assert out["memories"] == []


# ==============================================================================
# Partial results
# ==============================================================================

class TestPartialContext:

    def test_failed_category_is_omitted(self, session_factory, seeded_user):
        """Scenario: a failing adapter is reported in omitted while the rest still load."""
        adapters = tuple(a for a in DEFAULT_ADAPTERS if a is not DiaryAdapter) + (BrokenDiaryAdapter,)

        context = _builder(session_factory, adapters=adapters).build(seeded_user.id)

        assert context.partial is True
        assert context.omitted == ["diary"]
        assert "diary" not in context.categories
        assert context.categories["metrics"][0].fields["readiness_score"] == 71

    def test_timed_out_category_is_omitted(self, session_factory, seeded_user):
        """Scenario: a slow adapter is dropped at the deadline without blocking the build."""
        adapters = tuple(a for a in DEFAULT_ADAPTERS if a is not WorkoutAdapter) + (SlowWorkoutAdapter,)

        started = time.monotonic()
        context = _builder(session_factory, adapters=adapters, fetch_timeout_seconds=0.5).build(seeded_user.id)

        assert time.monotonic() - started < 2.0
        assert context.omitted == ["workouts"]
        assert "diary" in context.categories


class TestRunConcurrently:

    def test_collects_results_and_failures(self):
        """Scenario: results and failed task names are separated."""
        def boom():
            raise ValueError("nope")

        results, failed = run_concurrently({"a": lambda: 1, "b": boom, "c": lambda: 3}, 2, 5)

        assert results == {"a": 1, "c": 3}
        assert failed == ["b"]

    def test_no_tasks(self):
        """Scenario: nothing to run returns empty results."""
        assert run_concurrently({}, 4, 1) == ({}, [])

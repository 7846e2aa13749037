"""
Shared fixtures for the memory engine tests.

Each test gets its own SQLite file so the concurrent fetches in the context
builder open real, independent connections.
"""

from datetime import date, datetime

import pytest
from sqlalchemy.orm import sessionmaker

import models
import memory_engine.models  # noqa: F401
from database import Base, make_engine


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path}/memory_engine_test.db")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(email="runner@example.com", plan="free", status="none"):
        user = models.User(email=email, full_name="Test Runner", plan=plan, subscription_status=status)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def add_diary(db):
    def _add(user_id, day, notes, visibility="FULL_ACCESS", mood=3):
        entry = models.DiaryEntry(
            user_id=user_id, date=day, notes=notes, visibility_level=visibility,
            mood=mood, energy=3, stress=2,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
    return _add


@pytest.fixture
def seeded_user(db, make_user, add_diary):
    """A user with one record of each kind and a mix of diary visibility tags."""
    user = make_user()
    add_diary(user.id, date(2025, 3, 1), "Felt strong on the hills", "FULL_ACCESS")
    add_diary(user.id, date(2025, 3, 2), "Argument with my partner", "METRICS_ONLY")
    add_diary(user.id, date(2025, 3, 3), "Therapy session notes", "HIDDEN")

    db.add(models.Workout(
        user_id=user.id, date=datetime(2025, 3, 2, 7, 30), title="Easy run", type="run",
        duration_min=45, distance_km=8.2, completed=True, notes="Left knee twinge",
    ))
    db.add(models.MetricDaily(user_id=user.id, date=date(2025, 3, 2), readiness_score=71, ctl=42.0))
    db.add(models.DailyCheckIn(
        user_id=user.id, date=date(2025, 3, 2), sleep_quality=4, motivation=3,
        notes="Slept badly, kids sick", notes_visibility="METRICS_ONLY",
    ))
    db.add(models.PostWorkoutFeedback(
        user_id=user.id, perceived_difficulty="HARD", enjoyment=2,
        pain_or_discomfort="Shin pain", comment="Do not share", visible_to_ai=False,
        created_at=datetime(2025, 3, 2, 9, 0),
    ))
    db.commit()
    return user

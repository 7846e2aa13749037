from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Billing snapshot (written by the billing service, read-only here)
    plan = Column(String(20), default="free")  # free, pro
    subscription_status = Column(String(20), default="none")  # none, trialing, active, past_due, canceled

    workouts = relationship("Workout", back_populates="user")
    diary_entries = relationship("DiaryEntry", back_populates="user")


class Workout(Base):
    __tablename__ = "workouts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    date = Column(DateTime, nullable=False, index=True)
    title = Column(String, nullable=False)
    type = Column(String(30))  # run, bike, swim, strength, interval, ...
    duration_min = Column(Integer, nullable=True)
    distance_km = Column(Float, nullable=True)
    tss = Column(Float, nullable=True)
    planned = Column(Boolean, default=False)
    completed = Column(Boolean, default=False)

    notes = Column(Text, nullable=True)  # Free text

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="workouts")


class MetricDaily(Base):
    __tablename__ = "metrics_daily"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    readiness_score = Column(Integer, nullable=True)
    compliance_score = Column(Integer, nullable=True)
    burnout_risk = Column(Integer, nullable=True)

    # Training load (fitness / fatigue / form)
    ctl = Column(Float, nullable=True)
    atl = Column(Float, nullable=True)
    tsb = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class DailyCheckIn(Base):
    __tablename__ = "daily_checkins"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # 1-5 scales
    sleep_duration = Column(Float, nullable=True)  # Hours
    sleep_quality = Column(Integer, nullable=True)
    physical_fatigue = Column(Integer, nullable=True)
    mental_readiness = Column(Integer, nullable=True)
    motivation = Column(Integer, nullable=True)
    stress_level = Column(Integer, nullable=True)

    readiness_score = Column(Integer, nullable=True)
    ai_decision = Column(String(20), nullable=True)  # PROCEED, REDUCE, SWAP, REST

    notes = Column(Text, nullable=True)
    notes_visibility = Column(String(20), default="FULL_ACCESS")

    created_at = Column(DateTime, default=datetime.utcnow)


class PostWorkoutFeedback(Base):
    __tablename__ = "post_workout_feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workout_id = Column(Integer, ForeignKey("workouts.id"), nullable=True)

    perceived_difficulty = Column(String(20))  # EASY, MODERATE, HARD, BRUTAL
    vs_planned = Column(String(20))  # EASIER, AS_PLANNED, HARDER
    enjoyment = Column(Integer)  # 1-5
    mental_state = Column(Integer, nullable=True)  # 1-5

    pain_or_discomfort = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    visible_to_ai = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class DiaryEntry(Base):
    __tablename__ = "diary_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # 1-5 scales
    mood = Column(Integer, nullable=True)
    energy = Column(Integer, nullable=True)
    sleep_hrs = Column(Float, nullable=True)
    sleep_qual = Column(Integer, nullable=True)
    stress = Column(Integer, nullable=True)
    soreness = Column(Integer, nullable=True)
    motivation = Column(Integer, nullable=True)

    notes = Column(Text, nullable=True)
    visibility_level = Column(String(20), nullable=False, default="FULL_ACCESS")

    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="diary_entries")

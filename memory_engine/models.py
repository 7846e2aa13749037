"""
Memory Engine SQLAlchemy Models
===============================

Derived memories and their audit trail. Kept separate from the main
models.py so the engine stays self-contained.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON, Index

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Memory(Base):
    """
    A durable derived fact about one user.

    superseded_by_id unset = active. Once set it is never changed; the row
    stays for provenance until cleanup deletes it. The pointer is a plain
    column (no FK) so deleting a successor never reactivates its predecessor.
    """
    __tablename__ = "ai_memories"
    __table_args__ = (
        Index("ix_ai_memories_user_active", "user_id", "superseded_by_id"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    memory_layer = Column(String(20), nullable=False)  # SHORT_TERM, MID_TERM, LONG_TERM
    memory_type = Column(String(30), nullable=False)

    # Content
    title = Column(String(200), nullable=False)
    summary = Column(Text, nullable=False)
    confidence = Column(Integer, default=50)  # 0-100
    data_points = Column(Integer, default=0)

    # {"diary": [ids], "check_ins": [ids], ...}
    source_ids_json = Column(JSON, nullable=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)

    # Lifecycle
    expires_at = Column(DateTime, nullable=True, index=True)
    version = Column(Integer, default=1)
    superseded_by_id = Column(String(36), nullable=True)
    superseded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.superseded_by_id is None


class MemoryAudit(Base):
    """Append-only log of memory mutations. Never holds record contents."""
    __tablename__ = "ai_memory_audit"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    action = Column(String(20), nullable=False)  # CREATED, SUPERSEDED, DELETED, EXPIRED
    memory_type = Column(String(30), nullable=True)
    details = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

"""
Memory Store
============

Durable derived memories with write-once supersession and expiration.

Mutations (create, supersede, delete, cleanup) each run in one transaction
and rely on conditional UPDATE/DELETE statements for serialization, so a
concurrent supersede and cleanup on the same row cannot both succeed.
Supersession also write-locks both rows before walking the chain.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings
from memory_engine.errors import (
    Forbidden, MemoryEngineError, NotFound, StorageError, SupersessionConflict
)
from memory_engine.models import Memory, MemoryAudit

logger = logging.getLogger(__name__)


# ==============================================================================
# LAYERS & TYPES
# ==============================================================================
LAYER_TTL: Dict[str, Optional[timedelta]] = {
    "SHORT_TERM": timedelta(days=7),
    "MID_TERM": timedelta(days=30),
    "LONG_TERM": None,  # never expires
}

MEMORY_TYPES = (
    "PSYCHOLOGICAL",
    "FATIGUE_RESPONSE",
    "PREFERENCE",
    "COMMUNICATION",
    "OVERRIDE_PATTERN",
    "LANGUAGE_PATTERN",
)

MAX_AUDIT_DETAILS_LEN = 500

# User corrections override the producer; confidence drops but never below the floor
CORRECTION_PENALTY = 20
CORRECTION_CONFIDENCE_FLOOR = 30


def calculate_expires_at(layer: str, created_at: datetime) -> Optional[datetime]:
    """Expiration for a memory created at `created_at` in `layer`."""
    if layer not in LAYER_TTL:
        raise ValueError(f"Unknown memory layer: {layer}")
    ttl = LAYER_TTL[layer]
    return created_at + ttl if ttl else None


def calculate_confidence(
    data_points: int,
    has_recent_data: bool,
    contradiction_count: int,
    weeks_since_update: int,
    layer: str
) -> Tuple[int, str]:
    """
    Score a memory 0-100 and say how the score was reached.

    Base is 5 per data point (max 100). Modifiers:
    - Recency bonus: +10 if data from the last week
    - Consistency bonus: +15 with no contradictions and at least 5 data points
    - Contradiction penalty: -20 per contradiction
    - Decay penalty: -5 per week since last update (SHORT_TERM and MID_TERM only)
    """
    confidence = min(100, data_points * 5)
    parts = [f"Base: {confidence} ({data_points} data points x 5)"]

    if has_recent_data:
        confidence += 10
        parts.append("+10 (recent data)")

    if contradiction_count == 0 and data_points >= 5:
        confidence += 15
        parts.append("+15 (consistent pattern)")

    if contradiction_count > 0:
        penalty = contradiction_count * 20
        confidence -= penalty
        plural = "s" if contradiction_count > 1 else ""
        parts.append(f"-{penalty} ({contradiction_count} contradiction{plural})")

    if layer != "LONG_TERM" and weeks_since_update > 0:
        decay = weeks_since_update * 5
        confidence -= decay
        plural = "s" if weeks_since_update > 1 else ""
        parts.append(f"-{decay} ({weeks_since_update} week{plural} decay)")

    return max(0, min(100, confidence)), ", ".join(parts)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def memory_to_dict(memory: Memory) -> Dict[str, Any]:
    """
    Serializable view of a memory.

    Source ids are left out on purpose: they may reference records the user
    has since hidden.
    """
    return {
        "id": memory.id,
        "layer": memory.memory_layer,
        "type": memory.memory_type,
        "title": memory.title,
        "summary": memory.summary,
        "confidence": memory.confidence,
        "data_points": memory.data_points,
        "period_start": _iso(memory.period_start),
        "period_end": _iso(memory.period_end),
        "expires_at": _iso(memory.expires_at),
        "version": memory.version,
        "superseded_by_id": memory.superseded_by_id,
        "created_at": _iso(memory.created_at),
    }


class MemoryStore:
    """
    Repository for ai_memories.

    Reads return ORM rows; writes commit and surface failures as StorageError.
    """

    def __init__(
        self,
        db: Session,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        if retention_days is None:
            retention_days = Settings.MEMORY_HISTORY_RETENTION_DAYS
        self.retention = timedelta(days=retention_days)
        self._now = clock

    # ==========================================================================
    # READS
    # ==========================================================================

    def list_active(self, user_id: int) -> List[Memory]:
        """Memories with no supersession pointer, newest first."""
        return self.db.query(Memory).filter(
            Memory.user_id == user_id,
            Memory.superseded_by_id.is_(None)
        ).order_by(Memory.created_at.desc(), Memory.id.desc()).all()

    def list_history(self, user_id: int) -> List[Memory]:
        """All memories including superseded ones, newest first."""
        return self.db.query(Memory).filter(
            Memory.user_id == user_id
        ).order_by(Memory.created_at.desc(), Memory.id.desc()).all()

    def get(self, memory_id: str) -> Memory:
        memory = self.db.query(Memory).filter(Memory.id == memory_id).first()
        if memory is None:
            raise NotFound(f"Memory {memory_id} not found")
        return memory

    def get_owned(self, user_id: int, memory_id: str) -> Memory:
        """Like get(), but a memory owned by someone else raises Forbidden."""
        memory = self.get(memory_id)
        if memory.user_id != user_id:
            raise Forbidden(f"Memory {memory_id} not found")
        return memory

    def user_ids_with_memories(self) -> List[int]:
        rows = self.db.query(Memory.user_id).distinct().order_by(Memory.user_id).all()
        return [row[0] for row in rows]

    # ==========================================================================
    # WRITES
    # ==========================================================================

    def create_memory(
        self,
        user_id: int,
        layer: str,
        memory_type: str,
        title: str,
        summary: str,
        confidence: int = 50,
        data_points: int = 0,
        sources: Optional[Dict[str, List[int]]] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        supersedes_id: Optional[str] = None
    ) -> Memory:
        """
        Store a memory written by the extraction producer.

        With `supersedes_id` the new memory and the predecessor's pointer are
        written in the same transaction.
        """
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unknown memory type: {memory_type}")

        now = self._now()
        memory = Memory(
            user_id=user_id,
            memory_layer=layer,
            memory_type=memory_type,
            title=title,
            summary=summary,
            confidence=max(0, min(100, confidence)),
            data_points=data_points,
            source_ids_json=sources or {},
            period_start=period_start,
            period_end=period_end,
            expires_at=calculate_expires_at(layer, now),
            version=1,
            created_at=now,
            updated_at=now,
        )

        try:
            if supersedes_id:
                predecessor = self.get_owned(user_id, supersedes_id)
                memory.version = (predecessor.version or 1) + 1

            self.db.add(memory)
            self.db.flush()
            self._audit(user_id, "CREATED", memory_type, f"{title} - {data_points} data points")

            if supersedes_id:
                self._set_pointer(supersedes_id, memory, now)

            self.db.commit()
        except MemoryEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create memory: {e}") from e

        self.db.refresh(memory)
        logger.info(f"Created memory {memory.id} for user {user_id} ({layer}/{memory_type})")
        return memory

    def supersede(self, old_memory_id: str, new_memory_id: str) -> Memory:
        """
        Point `old_memory_id` at `new_memory_id`.

        Write-once: fails with SupersessionConflict if the old memory already
        has a pointer, if both ids are equal, or if it would close a cycle.
        """
        if old_memory_id == new_memory_id:
            raise SupersessionConflict("A memory cannot supersede itself")

        try:
            old = self.get(old_memory_id)
            new = self.get(new_memory_id)
            if old.user_id != new.user_id:
                raise SupersessionConflict("Memories belong to different users")

            self._set_pointer(old_memory_id, new, self._now())
            self.db.commit()
        except MemoryEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to supersede memory: {e}") from e

        logger.info(f"Memory {old_memory_id} superseded by {new_memory_id}")
        return self.get(old_memory_id)

    def _set_pointer(self, old_memory_id: str, new: Memory, now: datetime):
        self._lock_rows(old_memory_id, new.id)
        if self._chain_reaches(new.id, old_memory_id):
            raise SupersessionConflict(f"Superseding {old_memory_id} with {new.id} would create a cycle")

        result = self.db.execute(
            update(Memory)
            .where(
                Memory.id == old_memory_id,
                Memory.user_id == new.user_id,
                Memory.superseded_by_id.is_(None)
            )
            .values(superseded_by_id=new.id, superseded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            still_there = self.db.query(Memory.id).filter(Memory.id == old_memory_id).first()
            if still_there is None:
                raise NotFound(f"Memory {old_memory_id} not found")
            raise SupersessionConflict(f"Memory {old_memory_id} is already superseded")

        self._audit(new.user_id, "SUPERSEDED", new.memory_type,
                    f"{old_memory_id} -> {new.id}")

    def _lock_rows(self, *memory_ids: str):
        """
        Write-lock the rows (the whole database on SQLite) until commit, in id
        order. The chain walk that follows then sees every committed pointer,
        and two opposing supersessions run one after the other.
        """
        for memory_id in sorted(set(memory_ids)):
            self.db.execute(
                update(Memory)
                .where(Memory.id == memory_id)
                .values(updated_at=Memory.updated_at)
                .execution_options(synchronize_session=False)
            )

    def _chain_reaches(self, start_id: str, target_id: str) -> bool:
        """Follow supersession pointers forward from start_id looking for target_id."""
        seen = set()
        current = start_id
        while current and current not in seen:
            if current == target_id:
                return True
            seen.add(current)
            current = self.db.query(Memory.superseded_by_id).filter(
                Memory.id == current
            ).scalar()
        return False

    def delete_memory(self, user_id: int, memory_id: str) -> None:
        """User-initiated delete. Foreign memories raise Forbidden."""
        try:
            memory = self.get_owned(user_id, memory_id)
            memory_type, title = memory.memory_type, memory.title
            self.db.delete(memory)
            self._audit(user_id, "DELETED", memory_type, f"Deleted: {title}")
            self.db.commit()
        except MemoryEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete memory: {e}") from e

        logger.info(f"Deleted memory {memory_id} for user {user_id}")

    def correct_memory(
        self,
        user_id: int,
        memory_id: str,
        title: Optional[str] = None,
        summary: Optional[str] = None
    ) -> Memory:
        """
        User correction of an active memory's text.

        Confidence drops by CORRECTION_PENALTY (floor CORRECTION_CONFIDENCE_FLOOR)
        and the version is bumped. Superseded memories are read-only.
        """
        if not title and not summary:
            raise ValueError("No correction provided")

        try:
            memory = self.get_owned(user_id, memory_id)
            new_title = title or memory.title
            values = {
                "title": new_title,
                "summary": summary or memory.summary,
                "confidence": max(CORRECTION_CONFIDENCE_FLOOR,
                                  (memory.confidence or 0) - CORRECTION_PENALTY),
                "version": (memory.version or 1) + 1,
                "updated_at": self._now(),
            }
            self._update_active(memory_id, values)
            self._audit(user_id, "CORRECTED", memory.memory_type,
                        f"Corrected: {memory.title} -> {new_title}")
            self.db.commit()
        except MemoryEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to correct memory: {e}") from e

        logger.info(f"Corrected memory {memory_id} for user {user_id}")
        return self.get(memory_id)

    def promote_memory(self, user_id: int, memory_id: str) -> Memory:
        """Move an active SHORT_TERM memory to MID_TERM and restart its expiration."""
        try:
            memory = self.get_owned(user_id, memory_id)
            if memory.memory_layer != "SHORT_TERM":
                raise ValueError(f"Only SHORT_TERM memories can be promoted, not {memory.memory_layer}")

            now = self._now()
            self._update_active(
                memory_id,
                {
                    "memory_layer": "MID_TERM",
                    "expires_at": calculate_expires_at("MID_TERM", now),
                    "version": (memory.version or 1) + 1,
                    "updated_at": now,
                },
                Memory.memory_layer == "SHORT_TERM",
            )
            self._audit(user_id, "PROMOTED", memory.memory_type, f"Promoted to MID_TERM: {memory.title}")
            self.db.commit()
        except (MemoryEngineError, ValueError):
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to promote memory: {e}") from e

        logger.info(f"Promoted memory {memory_id} for user {user_id}")
        return self.get(memory_id)

    def _update_active(self, memory_id: str, values: Dict[str, Any], *conditions):
        """Update a memory only while it is still active. Raises SupersessionConflict otherwise."""
        result = self.db.execute(
            update(Memory)
            .where(Memory.id == memory_id, Memory.superseded_by_id.is_(None), *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SupersessionConflict(f"Memory {memory_id} changed or was superseded")

    def cleanup_expired(self, user_id: int) -> int:
        """
        Delete the user's expired memories and superseded memories past the
        retention window. Returns how many rows were removed.
        """
        now = self._now()
        history_cutoff = now - self.retention

        try:
            removed = self.db.query(Memory).filter(
                Memory.user_id == user_id,
                or_(
                    and_(Memory.expires_at.isnot(None), Memory.expires_at < now),
                    and_(Memory.superseded_at.isnot(None), Memory.superseded_at < history_cutoff),
                )
            ).delete(synchronize_session=False)

            if removed:
                self._audit(user_id, "EXPIRED", None, f"{removed} expired memories cleaned up")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Cleanup failed for user {user_id}: {e}") from e

        if removed:
            logger.info(f"Cleaned up {removed} memories for user {user_id}")
        return removed

    def _audit(self, user_id: int, action: str, memory_type: Optional[str], details: str):
        if len(details) > MAX_AUDIT_DETAILS_LEN:
            details = details[:MAX_AUDIT_DETAILS_LEN - 3] + "..."
        self.db.add(MemoryAudit(
            user_id=user_id,
            action=action,
            memory_type=memory_type,
            details=details,
            created_at=self._now(),
        ))

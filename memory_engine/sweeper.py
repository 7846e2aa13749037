"""
Memory Cleanup Sweeper
======================

Deletes expired memories and superseded memories past retention. Triggered
by an external scheduler; each invocation is one bounded unit of work.
Failures are not retried here: they surface as a failed job (exit code 1)
and the scheduler decides what to do.

Usage:
    python -m memory_engine.sweeper              # every user with memories
    python -m memory_engine.sweeper --user-id 42
"""

import argparse
import logging
import sys
from typing import Callable, Optional

from memory_engine.memory_store import MemoryStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Stateless wrapper around MemoryStore.cleanup_expired."""

    def __init__(self, session_factory: Callable, retention_days: Optional[int] = None):
        self.session_factory = session_factory
        self.retention_days = retention_days

    def sweep(self, user_id: int) -> int:
        db = self.session_factory()
        try:
            return MemoryStore(db, retention_days=self.retention_days).cleanup_expired(user_id)
        finally:
            db.close()

    def sweep_all(self) -> int:
        """Sweep every user that owns memories. Stops at the first failure."""
        db = self.session_factory()
        try:
            user_ids = MemoryStore(db).user_ids_with_memories()
        finally:
            db.close()

        total = 0
        for user_id in user_ids:
            try:
                total += self.sweep(user_id)
            except Exception:
                logger.exception(f"Memory cleanup failed for user {user_id}")
                raise
        logger.info(f"Memory cleanup removed {total} memories across {len(user_ids)} users")
        return total


def main(argv=None, session_factory: Optional[Callable] = None) -> int:
    parser = argparse.ArgumentParser(description="Clean up expired AI memories")
    parser.add_argument("--user-id", type=int, default=None)
    args = parser.parse_args(argv)

    if session_factory is None:
        from database import SessionLocal
        session_factory = SessionLocal

    sweeper = CleanupSweeper(session_factory)
    try:
        if args.user_id is not None:
            removed = sweeper.sweep(args.user_id)
            logger.info(f"Removed {removed} memories for user {args.user_id}")
        else:
            sweeper.sweep_all()
    except Exception as e:
        logger.error(f"Memory cleanup job failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

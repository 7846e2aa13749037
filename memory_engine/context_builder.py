"""
Context Builder
===============

Assembles one bounded, redacted context object per user for the reasoning
consumer.

Flow:
1. Fan out: every record adapter + the active-memory listing run in parallel,
   each on its own session (reads only, no ordering between categories)
2. Every record goes through the Visibility Policy
3. Categories keep their adapter's recency order
4. A category that fails or times out is omitted and reported, not fatal
5. The serialized result is scanned for sensitive values before returning
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from config import Settings
from memory_engine.adapters import DEFAULT_ADAPTERS, RecordAdapter, Window, sensitive_keys
from memory_engine.errors import SourceUnavailable
from memory_engine.memory_store import MemoryStore, memory_to_dict
from memory_engine.visibility import RedactedRecord, assert_no_sensitive_leak, redact

logger = logging.getLogger(__name__)

CONTEXT_VERSION = "memory-context.v1"
MEMORIES_CATEGORY = "memories"


@dataclass(frozen=True)
class ContextConfig:
    """Per-builder configuration; injected so tests can swap values."""
    category_cap: int = 200
    fetch_timeout_seconds: float = 10.0
    max_workers: int = 6
    provenance_window_days: int = 14

    @classmethod
    def from_settings(cls, settings=Settings) -> "ContextConfig":
        return cls(
            category_cap=settings.CONTEXT_CATEGORY_CAP,
            fetch_timeout_seconds=settings.CONTEXT_FETCH_TIMEOUT_SECONDS,
            max_workers=settings.CONTEXT_MAX_WORKERS,
            provenance_window_days=settings.PROVENANCE_WINDOW_DAYS,
        )


@dataclass
class CategoryResult:
    category: str
    records: List[RedactedRecord]
    excluded_hidden: int = 0


@dataclass
class ContextObject:
    """Ephemeral per-request context. Never persisted."""
    user_id: int
    generated_at: datetime
    categories: Dict[str, List[RedactedRecord]] = field(default_factory=dict)
    excluded_hidden: Dict[str, int] = field(default_factory=dict)
    memories: List[Dict[str, Any]] = field(default_factory=list)
    omitted: List[str] = field(default_factory=list)
    context_version: str = CONTEXT_VERSION

    @property
    def partial(self) -> bool:
        return len(self.omitted) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_version": self.context_version,
            "user_id": self.user_id,
            "generated_at": self.generated_at.isoformat(),
            "partial": self.partial,
            "omitted": list(self.omitted),
            "categories": {
                name: [record.to_dict() for record in records]
                for name, records in self.categories.items()
            },
            "excluded_hidden": dict(self.excluded_hidden),
            "memories": list(self.memories),
        }


def collect_category(
    adapter: RecordAdapter,
    user_id: int,
    limit: int,
    window: Optional[Window] = None
) -> CategoryResult:
    """
    Fetch one category and pass every record through the Visibility Policy.

    Shared by the context builder and the provenance explainer so both
    surfaces go through the same redaction path.
    """
    rows = adapter.fetch_recent(user_id, limit, window)

    records: List[RedactedRecord] = []
    hidden = 0
    for row in rows:
        source = adapter.project(row)
        redacted = redact(source, source.visibility)
        if redacted is None:
            hidden += 1
            continue
        records.append(redacted)

    return CategoryResult(category=adapter.category, records=records, excluded_hidden=hidden)


def run_concurrently(
    tasks: Dict[str, Callable[[], Any]],
    max_workers: int,
    timeout_seconds: float
) -> Tuple[Dict[str, Any], List[str]]:
    """
    Run named read-only tasks on a request-scoped pool.

    Returns (results by name, names that failed or timed out). Unfinished
    tasks are cancelled when the pool is released.
    """
    results: Dict[str, Any] = {}
    failed: List[str] = []
    if not tasks:
        return results, failed

    executor = ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(tasks))),
        thread_name_prefix="memory-context"
    )
    try:
        futures = {name: executor.submit(fn) for name, fn in tasks.items()}
        deadline = time.monotonic() + timeout_seconds

        for name, future in futures.items():
            remaining = max(0.0, deadline - time.monotonic())
            try:
                results[name] = future.result(timeout=remaining)
            except Exception as e:
                error = SourceUnavailable(name, str(e) or type(e).__name__)
                logger.warning(str(error))
                failed.append(name)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return results, failed


class ContextBuilder:
    """
    Builds the context object for a user.

    `session_factory` is called once per concurrent fetch; every fetch gets
    its own session and closes it.
    """

    def __init__(
        self,
        session_factory: Callable,
        config: Optional[ContextConfig] = None,
        adapters: Sequence[Type[RecordAdapter]] = DEFAULT_ADAPTERS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_factory = session_factory
        self.config = config or ContextConfig.from_settings()
        self.adapters = tuple(adapters)
        self.sensitive_keys = sensitive_keys(self.adapters)
        self._now = clock

    def build(self, user_id: int) -> ContextObject:
        generated_at = self._now()
        logger.info(f"Building memory context for user {user_id}")

        tasks: Dict[str, Callable[[], Any]] = {
            adapter_cls.category: self._category_task(adapter_cls, user_id)
            for adapter_cls in self.adapters
        }
        tasks[MEMORIES_CATEGORY] = lambda: self._list_active_memories(user_id)

        results, failed = run_concurrently(
            tasks, self.config.max_workers, self.config.fetch_timeout_seconds
        )

        context = ContextObject(user_id=user_id, generated_at=generated_at)
        for adapter_cls in self.adapters:
            result = results.get(adapter_cls.category)
            if result is None:
                continue
            context.categories[result.category] = result.records
            context.excluded_hidden[result.category] = result.excluded_hidden

        if MEMORIES_CATEGORY in results:
            context.memories = results[MEMORIES_CATEGORY]

        context.omitted = failed

        assert_no_sensitive_leak(context.to_dict(), self.sensitive_keys)
        return context

    def fetch_category(
        self,
        adapter_cls: Type[RecordAdapter],
        user_id: int,
        limit: Optional[int] = None,
        window: Optional[Window] = None
    ) -> CategoryResult:
        db = self.session_factory()
        try:
            adapter = adapter_cls(db)
            if limit is None:
                limit = min(adapter.default_limit, self.config.category_cap)
            return collect_category(adapter, user_id, min(limit, self.config.category_cap), window)
        finally:
            db.close()

    def _category_task(self, adapter_cls: Type[RecordAdapter], user_id: int):
        return lambda: self.fetch_category(adapter_cls, user_id)

    def _list_active_memories(self, user_id: int) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            store = MemoryStore(db)
            return [memory_to_dict(m) for m in store.list_active(user_id)]
        finally:
            db.close()

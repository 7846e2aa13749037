"""
Provenance Explainer
====================

Answers "why does it know this" for a single memory. Source records are
re-fetched and re-redacted through the same path the context builder uses;
nothing is served from a cached context.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Type

from memory_engine.adapters import DEFAULT_ADAPTERS, RecordAdapter, Window, sensitive_keys
from memory_engine.context_builder import ContextBuilder, ContextConfig, run_concurrently
from memory_engine.memory_store import MemoryStore, calculate_confidence, memory_to_dict
from memory_engine.models import Memory
from memory_engine.visibility import RedactedRecord, assert_no_sensitive_leak

logger = logging.getLogger(__name__)

# Source keys written by older producers
_SOURCE_KEY_ALIASES = {
    "checkIns": "check_ins",
}


@dataclass
class ProvenanceResult:
    memory: Dict[str, Any]
    historical: bool
    window_start: datetime
    window_end: datetime
    sources: Dict[str, List[RedactedRecord]] = field(default_factory=dict)
    omitted: List[str] = field(default_factory=list)
    confidence_explanation: str = ""
    can_edit: bool = False
    can_delete: bool = True

    @property
    def partial(self) -> bool:
        return len(self.omitted) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": dict(self.memory),
            "historical": self.historical,
            "window": {
                "start": self.window_start.isoformat(),
                "end": self.window_end.isoformat(),
            },
            "partial": self.partial,
            "omitted": list(self.omitted),
            "confidence_explanation": self.confidence_explanation,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
            "sources": {
                name: [record.to_dict() for record in records]
                for name, records in self.sources.items()
            },
        }


def _normalise_source_ids(raw: Optional[Dict[str, Any]]) -> Dict[str, Set[str]]:
    if not raw:
        return {}
    out: Dict[str, Set[str]] = {}
    for key, ids in raw.items():
        category = _SOURCE_KEY_ALIASES.get(key, key)
        out.setdefault(category, set()).update(str(i) for i in (ids or []))
    return out


class ProvenanceExplainer:

    def __init__(
        self,
        session_factory: Callable,
        config: Optional[ContextConfig] = None,
        adapters: Sequence[Type[RecordAdapter]] = DEFAULT_ADAPTERS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_factory = session_factory
        self._now = clock
        self.builder = ContextBuilder(session_factory, config, adapters)
        self.config = self.builder.config
        self.adapters = self.builder.adapters
        self.sensitive_keys = sensitive_keys(self.adapters)

    def explain(self, user_id: int, memory_id: str) -> ProvenanceResult:
        """
        Redacted source records for `memory_id`.

        Raises NotFound if it does not exist and Forbidden if another user
        owns it. Superseded memories are still explainable.
        """
        db = self.session_factory()
        try:
            memory = MemoryStore(db).get_owned(user_id, memory_id)
            view = memory_to_dict(memory)
            historical = not memory.is_active
            window = self._window(memory)
            wanted = _normalise_source_ids(memory.source_ids_json)
            confidence_explanation = self._confidence_explanation(memory)
            can_edit = memory.is_active and memory.memory_layer != "LONG_TERM"
        finally:
            db.close()

        tasks = {
            adapter_cls.category: self._category_task(adapter_cls, user_id, window)
            for adapter_cls in self.adapters
        }
        results, failed = run_concurrently(
            tasks, self.config.max_workers, self.config.fetch_timeout_seconds
        )

        sources: Dict[str, List[RedactedRecord]] = {}
        for adapter_cls in self.adapters:
            result = results.get(adapter_cls.category)
            if result is None:
                continue
            records = result.records
            if wanted:
                ids = wanted.get(adapter_cls.category, set())
                records = [r for r in records if str(r.record_id) in ids]
            sources[adapter_cls.category] = records

        provenance = ProvenanceResult(
            memory=view,
            historical=historical,
            window_start=window[0],
            window_end=window[1],
            sources=sources,
            omitted=failed,
            confidence_explanation=confidence_explanation,
            can_edit=can_edit,
        )
        assert_no_sensitive_leak(provenance.to_dict(), self.sensitive_keys)

        logger.info(f"Explained memory {memory_id} for user {user_id} "
                    f"({sum(len(v) for v in sources.values())} sources)")
        return provenance

    def _confidence_explanation(self, memory: Memory) -> str:
        weeks_since_update = max(0, (self._now() - (memory.updated_at or memory.created_at)).days // 7)
        _, explanation = calculate_confidence(
            data_points=memory.data_points or 0,
            has_recent_data=weeks_since_update == 0,
            contradiction_count=1 if "contradicts" in (memory.summary or "").lower() else 0,
            weeks_since_update=weeks_since_update,
            layer=memory.memory_layer,
        )
        return explanation

    def _window(self, memory: Memory) -> Window:
        """The period the memory was derived from, else a look-back from its creation."""
        end = memory.period_end or memory.created_at
        start = memory.period_start or (end - timedelta(days=self.config.provenance_window_days))
        return start, end

    def _category_task(self, adapter_cls: Type[RecordAdapter], user_id: int, window: Window):
        return lambda: self.builder.fetch_category(
            adapter_cls, user_id, limit=self.config.category_cap, window=window
        )

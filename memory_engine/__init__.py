"""
Memory Engine - Privacy-safe context and durable memory for the AI coach
========================================================================

- Context builder: bounded, redacted per-user context, fetched in parallel
- Visibility policy: FULL_ACCESS / METRICS_ONLY / HIDDEN, fails closed
- Memory store: write-once supersession, layer expiration, cleanup
- Provenance: which (redacted) records a memory was derived from

Key Design Principles:
1. Every record passes through one redaction path before leaving the engine
2. Unknown visibility tags are HIDDEN
3. A failed category makes the context partial, never wrong
4. Superseded memories stay explainable until retention cleanup
"""

from memory_engine.context_builder import ContextBuilder, ContextConfig, ContextObject
from memory_engine.memory_store import MemoryStore
from memory_engine.provenance import ProvenanceExplainer
from memory_engine.sweeper import CleanupSweeper
from memory_engine.visibility import Visibility, redact

__all__ = [
    'ContextBuilder',
    'ContextConfig',
    'ContextObject',
    'MemoryStore',
    'ProvenanceExplainer',
    'CleanupSweeper',
    'Visibility',
    'redact',
]

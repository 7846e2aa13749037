"""
Memory Engine Errors
====================

Raised by the store, builder and explainer; the router maps them to HTTP
status codes. Forbidden subclasses NotFound so that anything treating a
missing memory as 404 treats a foreign one the same way.
"""

from typing import Optional


class MemoryEngineError(Exception):
    """Base class for memory engine failures."""


class Unauthorized(MemoryEngineError):
    """No resolvable identity on the request."""


class NotFound(MemoryEngineError):
    """No such memory or record."""


class Forbidden(NotFound):
    """Identity resolved but it does not own the target."""


class SourceUnavailable(MemoryEngineError):
    """One record category could not be fetched."""

    def __init__(self, category: str, reason: Optional[str] = None):
        self.category = category
        self.reason = reason
        super().__init__(f"Source '{category}' unavailable: {reason or 'unknown error'}")


class StorageError(MemoryEngineError):
    """A write failed and the caller must know about it."""


class SupersessionConflict(StorageError):
    """Supersession rejected (already superseded, self-reference or cycle)."""


class PrivacyLeakError(MemoryEngineError):
    """A sensitive field survived redaction."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Sensitive field leak detected at {path}")

"""
Pydantic Schemas for the Memory Engine API
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============ Request Schemas ============

class CleanupRequest(BaseModel):
    """Body for the internal cleanup trigger."""
    user_id: int


class CreateMemoryRequest(BaseModel):
    """Producer write. Content is assumed privacy-safe by the producer."""
    user_id: int
    layer: str = Field(..., pattern="^(SHORT_TERM|MID_TERM|LONG_TERM)$")
    memory_type: str
    title: str = Field(..., max_length=200)
    summary: str = Field(..., max_length=2000)
    confidence: int = Field(default=50, ge=0, le=100)
    data_points: int = Field(default=0, ge=0)
    sources: Dict[str, List[int]] = {}
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    supersedes_id: Optional[str] = None


class SupersedeRequest(BaseModel):
    new_memory_id: str


class CorrectMemoryRequest(BaseModel):
    """User correction. At least one of title or summary."""
    title: Optional[str] = Field(default=None, max_length=200)
    summary: Optional[str] = Field(default=None, max_length=2000)


# ============ Response Schemas ============

class MemoryView(BaseModel):
    id: str
    layer: str
    type: str
    title: str
    summary: str
    confidence: int
    data_points: int
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    expires_at: Optional[str] = None
    version: int
    superseded_by_id: Optional[str] = None
    created_at: str


class ContextResponse(BaseModel):
    """Redacted context. `partial` is set when categories were omitted."""
    context_version: str
    user_id: int
    generated_at: str
    partial: bool
    omitted: List[str] = []
    categories: Dict[str, List[Dict[str, Any]]] = {}
    excluded_hidden: Dict[str, int] = {}
    memories: List[MemoryView] = []
    memory_layer_enabled: bool = True


class ProvenanceWindow(BaseModel):
    start: str
    end: str


class ProvenanceResponse(BaseModel):
    memory: MemoryView
    historical: bool
    window: ProvenanceWindow
    partial: bool
    omitted: List[str] = []
    confidence_explanation: str = ""
    can_edit: bool = False
    can_delete: bool = True
    sources: Dict[str, List[Dict[str, Any]]] = {}


class CleanupResponse(BaseModel):
    ok: bool = True
    user_id: int
    deleted_count: int

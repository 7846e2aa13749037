"""
Memory Engine API Router
========================

FastAPI router for context, provenance and memory lifecycle endpoints.

User-facing routes trust the X-User-Id header set by the upstream session
layer. Internal routes (cleanup, producer writes) require the cron secret.
"""

import hmac
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from sqlalchemy.orm import Session

from config import Settings
from database import SessionLocal, get_db
from memory_engine.context_builder import ContextBuilder, ContextConfig
from memory_engine.entitlements import get_entitlements
from memory_engine.errors import (
    NotFound, StorageError, SupersessionConflict, Unauthorized
)
from memory_engine.memory_store import MemoryStore, memory_to_dict
from memory_engine.provenance import ProvenanceExplainer
from memory_engine.schemas import (
    CleanupRequest, CleanupResponse, ContextResponse, CorrectMemoryRequest, CreateMemoryRequest,
    MemoryView, ProvenanceResponse, SupersedeRequest
)
from memory_engine.sweeper import CleanupSweeper


router = APIRouter(prefix="/api/memory", tags=["memory"])

MEMORY_NOT_FOUND = "Memory not found"


# ==============================================================================
# Dependencies
# ==============================================================================

def get_session_factory() -> Callable:
    """Factory used for the concurrent per-category sessions."""
    return SessionLocal


def get_context_config() -> ContextConfig:
    return ContextConfig.from_settings()


def get_cron_secret() -> Optional[str]:
    return Settings.INTERNAL_CRON_SECRET


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """Resolve the caller. The session layer in front of us sets X-User-Id."""
    try:
        if not x_user_id:
            raise Unauthorized("No session")
        try:
            return int(x_user_id)
        except ValueError:
            raise Unauthorized("Malformed user id")
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail="Unauthorized") from e


def require_cron_secret(
    x_internal_cron_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    configured: Optional[str] = Depends(get_cron_secret)
) -> None:
    if not configured or len(configured) < 16:
        raise HTTPException(status_code=401, detail="Unauthorized")

    provided = x_internal_cron_secret
    if provided is None and authorization and authorization.startswith("Bearer "):
        provided = authorization[len("Bearer "):]

    if not provided or not hmac.compare_digest(provided, configured):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _memory_not_found() -> HTTPException:
    # Foreign and missing memories must look the same to the caller
    return HTTPException(status_code=404, detail=MEMORY_NOT_FOUND)


# ==============================================================================
# User-facing endpoints
# ==============================================================================

@router.get("/context", response_model=ContextResponse)
def get_context(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    session_factory: Callable = Depends(get_session_factory),
    config: ContextConfig = Depends(get_context_config)
):
    """
    Build the redacted context for the current user.

    Always 200 when the build ran; `partial` and `omitted` report any record
    category that could not be read. Users without a pro plan get the
    context without the memory layer.
    """
    context = ContextBuilder(session_factory, config).build(user_id)
    payload = context.to_dict()

    entitlements = get_entitlements(db, user_id)
    payload["memory_layer_enabled"] = entitlements.is_pro
    if not entitlements.is_pro:
        payload["memories"] = []

    return payload


@router.get("/memories", response_model=List[MemoryView])
def list_memories(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Active memories, newest first."""
    return [memory_to_dict(m) for m in MemoryStore(db).list_active(user_id)]


@router.get("/memories/{memory_id}/explain", response_model=ProvenanceResponse)
def explain_memory(
    memory_id: str,
    user_id: int = Depends(get_current_user_id),
    session_factory: Callable = Depends(get_session_factory),
    config: ContextConfig = Depends(get_context_config)
):
    """Why the coach knows this: redacted source records behind a memory."""
    try:
        result = ProvenanceExplainer(session_factory, config).explain(user_id, memory_id)
    except NotFound:
        raise _memory_not_found()
    return result.to_dict()


@router.delete("/memories/{memory_id}", status_code=204)
def delete_memory(
    memory_id: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    try:
        MemoryStore(db).delete_memory(user_id, memory_id)
    except NotFound:
        raise _memory_not_found()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(status_code=204)


@router.patch("/memories/{memory_id}", response_model=MemoryView)
def correct_memory(
    memory_id: str,
    body: CorrectMemoryRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """User correction of a memory's title or summary."""
    try:
        memory = MemoryStore(db).correct_memory(user_id, memory_id, body.title, body.summary)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound:
        raise _memory_not_found()
    except SupersessionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return memory_to_dict(memory)


@router.post("/memories/{memory_id}/promote", response_model=MemoryView)
def promote_memory(
    memory_id: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Confirm a short-term pattern: SHORT_TERM -> MID_TERM."""
    try:
        memory = MemoryStore(db).promote_memory(user_id, memory_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound:
        raise _memory_not_found()
    except SupersessionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return memory_to_dict(memory)


# ==============================================================================
# Internal endpoints (scheduler / producer)
# ==============================================================================

@router.post("/cleanup", response_model=CleanupResponse, dependencies=[Depends(require_cron_secret)])
def cleanup(
    body: CleanupRequest,
    session_factory: Callable = Depends(get_session_factory)
):
    """Remove expired and out-of-retention memories for one user."""
    try:
        deleted = CleanupSweeper(session_factory).sweep(body.user_id)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return CleanupResponse(ok=True, user_id=body.user_id, deleted_count=deleted)


@router.post("/memories", response_model=MemoryView, status_code=201,
             dependencies=[Depends(require_cron_secret)])
def create_memory(body: CreateMemoryRequest, db: Session = Depends(get_db)):
    try:
        memory = MemoryStore(db).create_memory(
            user_id=body.user_id,
            layer=body.layer,
            memory_type=body.memory_type,
            title=body.title,
            summary=body.summary,
            confidence=body.confidence,
            data_points=body.data_points,
            sources=body.sources,
            period_start=body.period_start,
            period_end=body.period_end,
            supersedes_id=body.supersedes_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound:
        raise _memory_not_found()
    except SupersessionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return memory_to_dict(memory)


@router.post("/memories/{memory_id}/supersede", response_model=MemoryView,
             dependencies=[Depends(require_cron_secret)])
def supersede_memory(memory_id: str, body: SupersedeRequest, db: Session = Depends(get_db)):
    try:
        memory = MemoryStore(db).supersede(memory_id, body.new_memory_id)
    except NotFound:
        raise _memory_not_found()
    except SupersessionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return memory_to_dict(memory)

"""Page-lifecycle endpoints: enter, read, refresh, verify and leave a dashboard session."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from .cache import LocalStore, MemoryLocalStore, SqlLocalStore
from .config import get_settings
from .pipeline import DashboardPipeline, DashboardSnapshot, SessionRegistry, SyncContext, UserIdentity
from .store_client import RecordStoreError
from .telemetry import emit_event
from .verification import AccountVerificationStateMachine, PasswordPolicyError, VerificationStepError

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

logger = logging.getLogger(__name__)

_local_store: Optional[LocalStore] = None
_registry: Optional[SessionRegistry] = None


class SessionCreateRequest(BaseModel):
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None
    school_id: Optional[str] = None
    account_values: Dict[str, Any] = Field(default_factory=dict)


class SessionResponse(BaseModel):
    session_id: str
    snapshot: DashboardSnapshot


class PasswordResetRequest(BaseModel):
    new_password: str
    confirm_password: str


def get_local_store() -> LocalStore:
    """Process-wide local tier; SQL-backed when a local store URL is configured."""
    global _local_store
    if _local_store is None:
        settings = get_settings()
        _local_store = SqlLocalStore() if settings.local_store_url else MemoryLocalStore()
        logger.info("Local cache tier: %s", type(_local_store).__name__)
    return _local_store


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(DashboardPipeline(get_settings(), get_local_store()))
    return _registry


async def reset_session_registry() -> None:
    global _registry, _local_store
    if _registry is not None:
        await _registry.close_all()
    _registry = None
    _local_store = None


def _context(registry: SessionRegistry, session_id: str) -> SyncContext:
    ctx = registry.get(session_id)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' was not found.",
        )
    return ctx


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def enter_session(
    payload: SessionCreateRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionResponse:
    ctx = await registry.enter(UserIdentity(**payload.model_dump()))
    snapshot = await registry.pipeline.run(ctx)
    emit_event(
        "session_entered",
        session_id=ctx.session_id,
        initialized=snapshot.initialized,
        cleared=snapshot.verification.cleared,
    )
    return SessionResponse(session_id=ctx.session_id, snapshot=snapshot)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionResponse:
    ctx = _context(registry, session_id)
    snapshot = ctx.snapshot or await registry.pipeline.run(ctx)
    return SessionResponse(session_id=session_id, snapshot=snapshot)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def leave_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    if not await registry.leave(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' was not found.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{session_id}/refresh", response_model=SessionResponse)
async def refresh_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionResponse:
    ctx = _context(registry, session_id)
    snapshot = await registry.pipeline.refresh_all(ctx)
    return SessionResponse(session_id=session_id, snapshot=snapshot)


async def _verification_ready(registry: SessionRegistry, ctx: SyncContext) -> AccountVerificationStateMachine:
    if ctx.verification is None:
        await registry.pipeline.run(ctx)
    if ctx.verification is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Verification status is not available yet.",
        )
    return ctx.verification


def _step_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, VerificationStepError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, PasswordPolicyError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Unable to save your verification details. Please try again.",
    )


@router.post("/{session_id}/verification/privacy", response_model=SessionResponse)
async def accept_privacy(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionResponse:
    ctx = _context(registry, session_id)
    machine = await _verification_ready(registry, ctx)
    try:
        await machine.accept_privacy()
    except (VerificationStepError, RecordStoreError) as exc:
        logger.warning("Privacy step for session %s rejected: %s", session_id, exc)
        raise _step_http_error(exc) from exc
    snapshot = await registry.pipeline.run(ctx)
    return SessionResponse(session_id=session_id, snapshot=snapshot)


@router.post("/{session_id}/verification/password", response_model=SessionResponse)
async def reset_password(
    session_id: str,
    payload: PasswordResetRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionResponse:
    ctx = _context(registry, session_id)
    machine = await _verification_ready(registry, ctx)
    try:
        await machine.reset_password(
            payload.new_password,
            payload.confirm_password,
        )
    except (VerificationStepError, PasswordPolicyError, RecordStoreError) as exc:
        logger.warning("Password step for session %s rejected: %s", session_id, exc)
        raise _step_http_error(exc) from exc
    snapshot = await registry.pipeline.run(ctx)
    return SessionResponse(session_id=session_id, snapshot=snapshot)


__all__ = [
    "PasswordResetRequest",
    "SessionCreateRequest",
    "SessionResponse",
    "get_local_store",
    "get_session_registry",
    "reset_session_registry",
    "router",
]

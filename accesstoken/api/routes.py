from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Path, Query, Request

from accesstoken.api.schemas import (
    AttributesUpdateRequest,
    Envelope,
    SessionListResponse,
    SessionView,
    WhoAmIResponse,
)
from accesstoken.logging import get_logger
from accesstoken.service.errors import NotFoundError
from accesstoken.service.gate import AccessContext, AccessTokenGate
from accesstoken.service.runtime import get_runtime
from accesstoken.service.tokens import TokenManager
from accesstoken.storage.models import SessionRecord

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def get_gate() -> AccessTokenGate:
    return get_runtime().gate


def get_tokens() -> TokenManager:
    return get_runtime().tokens


async def require_access(
    request: Request, gate: AccessTokenGate = Depends(get_gate)
) -> AsyncIterator[AccessContext]:
    """Reject the request unless it carries a live access token.

    The handler's exception (if any) is raised at ``yield``, which skips
    ``finalize`` so a failed request never persists session changes.
    """
    context = await gate.authenticate_request(request)
    yield context
    await gate.finalize(context)


async def optional_access(
    request: Request, gate: AccessTokenGate = Depends(get_gate)
) -> AsyncIterator[AccessContext]:
    context = await gate.authenticate_request(request, optional=True)
    yield context
    await gate.finalize(context)


def _session_id(record: SessionRecord) -> str:
    return record.token.rsplit(":", 1)[-1]


def _session_view(record: SessionRecord, *, current: Optional[str] = None) -> SessionView:
    return SessionView(
        session_id=_session_id(record),
        user_id=record.user_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        max_age=record.max_age,
        ip=record.ip,
        attributes=record.attributes,
        current=record.token == current,
    )


@router.get("/session", response_model=Envelope)
async def get_current_session(access: AccessContext = Depends(require_access)):
    return Envelope(status="ok", data=_session_view(access.session, current=access.session.token))


@router.patch("/session/attributes", response_model=Envelope)
async def update_session_attributes(
    body: AttributesUpdateRequest, access: AccessContext = Depends(require_access)
):
    session = access.session
    for key, value in body.attributes.items():
        if value is None:
            session.pop_attribute(key)
        else:
            session.set_attribute(key, value)
    return Envelope(status="ok", data=_session_view(session, current=session.token))


@router.get("/sessions", response_model=Envelope)
async def list_sessions(
    skip: int = Query(0, ge=0, le=1000),
    access: AccessContext = Depends(require_access),
    tokens: TokenManager = Depends(get_tokens),
):
    records = await tokens.list_by_user_id(access.user_id, skip)
    current = access.session.token
    payload = SessionListResponse(
        items=[_session_view(record, current=current) for record in records],
        skipped=skip,
    )
    return Envelope(status="ok", data=payload)


@router.delete("/sessions/{session_id}", response_model=Envelope)
async def revoke_session(
    session_id: str = Path(..., min_length=1, max_length=128, pattern="^[0-9a-f]+$"),
    access: AccessContext = Depends(require_access),
    tokens: TokenManager = Depends(get_tokens),
):
    token = f"{tokens.key_prefix}:{access.user_id}:{session_id}"
    if token == access.session.token:
        # Revoking the current session is a logout
        access.clear()
        return Envelope(status="ok", data={"revoked": True, "current": True})
    if await tokens.find_by_token(token) is None:
        raise NotFoundError("session not found")
    await tokens.destroy(token)
    logger.info("access_token_revoked", user_id=access.user_id)
    return Envelope(status="ok", data={"revoked": True, "current": False})


@router.post("/logout", response_model=Envelope)
async def logout(access: AccessContext = Depends(require_access)):
    access.clear()
    return Envelope(status="ok", data={"logged_out": True})


@router.get("/whoami", response_model=Envelope)
async def whoami(access: AccessContext = Depends(optional_access)):
    return Envelope(
        status="ok",
        data=WhoAmIResponse(authenticated=access.authenticated, user_id=access.user_id),
    )

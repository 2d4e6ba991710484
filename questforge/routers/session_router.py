"""
/session router
---------------
GET  /session/active   — The active session, else the most recent one, else null
POST /session/active   — {action: "create", title?} or {action: "activate", sessionId}
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from supabase import Client

from questforge.models.api.sessions import SessionActionRequest, SessionResponse
from questforge.services.auth_service import get_current_user_id
from questforge.services.errors import BadRequest
from questforge.services.session_service import SessionService
from questforge.supabase.supabase_client import get_supabase

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/session", tags=["session"])


@router.get("/active", response_model=SessionResponse)
def get_active_session(
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
) -> SessionResponse:
    return SessionResponse(session=SessionService(sb).get_active_or_latest(user_id))


@router.post("/active", response_model=SessionResponse)
def change_active_session(
    req: SessionActionRequest,
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
) -> SessionResponse:
    svc = SessionService(sb)
    if req.action == "create":
        return SessionResponse(session=svc.create_session(user_id, req.title))

    if not req.session_id:
        raise BadRequest("sessionId is required for action=activate")
    return SessionResponse(session=svc.activate_session(user_id, req.session_id))

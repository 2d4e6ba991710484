"""
/ai/generations router
----------------------
GET  /ai/generations   — The caller's provider calls (ai_generations), newest first
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from supabase import Client

from questforge.models.api.generations import GenerationLogListResponse
from questforge.services.auth_service import get_current_user_id
from questforge.services.generation_log_service import MAX_LIST_LIMIT, GenerationLogService
from questforge.supabase.supabase_client import get_supabase

router = APIRouter(prefix="/ai/generations", tags=["generations"])


@router.get("", response_model=GenerationLogListResponse)
def list_generations(
    session_id: Optional[str] = Query(None),
    generation_type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
) -> GenerationLogListResponse:
    items = GenerationLogService(sb).list_for_user(
        user_id,
        session_id=session_id,
        generation_type=generation_type,
        status=status,
        limit=limit,
    )
    return GenerationLogListResponse(items=items)

"""
/admin router
-------------
GET  /admin/health   — Storage tables reachable, provider / queue / worker configured
"""
from __future__ import annotations

import logging
import os
from typing import List, Tuple

from fastapi import APIRouter

from questforge.models.api.admin import HealthResponse
from questforge.services.errors import QuestForgeError
from questforge.services.job_service import build_worker_url, worker_secret
from questforge.supabase.supabase_client import get_supabase, run_query

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

# Sessions back every route; ai_jobs backs the queue path.
CHECKED_TABLES: Tuple[str, ...] = ("game_sessions", "ai_jobs")


def _check_table(sb, table: str) -> Tuple[bool, str]:
    try:
        run_query(f"{table} health", lambda: sb.table(table).select("id").limit(1).execute())
    except QuestForgeError as e:
        return False, e.message
    return True, ""


def _worker_configured() -> Tuple[bool, str]:
    try:
        build_worker_url()
    except RuntimeError as e:
        return False, str(e)
    if not worker_secret():
        return False, "WORKER_SECRET missing"
    return True, ""


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """
    Dependency check without side effects: one `select id limit 1` per checked
    table, env presence for OpenAI and QStash, and whether the worker URL and
    shared secret are set. No provider or queue call is made.
    """
    problems: List[str] = []

    tables = {}
    try:
        sb = get_supabase()
    except Exception as e:
        logger.error("health.supabase.client_error: %s", e)
        sb = None
        problems.append(f"Supabase client unavailable: {e}")
    for table in CHECKED_TABLES:
        if sb is None:
            tables[table] = False
            continue
        ok, why = _check_table(sb, table)
        tables[table] = ok
        if not ok:
            logger.error("health.table.error table=%s: %s", table, why)
            problems.append(why)

    openai_ok = bool(os.environ.get("OPENAI_API_KEY"))
    if not openai_ok:
        problems.append("OPENAI_API_KEY missing")
    qstash_ok = bool(os.environ.get("QSTASH_TOKEN"))
    if not qstash_ok:
        problems.append("QSTASH_TOKEN missing")
    worker_ok, why = _worker_configured()
    if not worker_ok:
        problems.append(why)

    supabase_ok = all(tables.values())
    return HealthResponse(
        status="ok" if not problems else "degraded",
        supabase=supabase_ok,
        openai=openai_ok,
        qstash=qstash_ok,
        worker=worker_ok,
        tables=tables,
        detail="; ".join(problems) or None,
    )

"""
questforge/services/generation_log_service.py
---------------------------------------------
Audit trail of provider calls (``ai_generations`` table).

One row per generator invocation, successful or not: what was asked
(prompt inputs and quest facts), what came back (parsed JSON and rendered
markdown), which model, how long it took and why it failed. Cache hits never
reach the generator and are not recorded.

Writing the row is best-effort: a failed insert is logged and never changes
the outcome of the generation it describes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from questforge.helpers.request_context import current_context
from questforge.services.errors import StorageError
from questforge.supabase.supabase_client import run_query

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

DEFAULT_PROVIDER = "openai"
MAX_LIST_LIMIT = 200


@dataclass
class GenerationAttempt:
    """Everything known about one provider call, filled in as it progresses."""

    generation_type: str
    session_id: str
    user_id: Optional[str] = None
    chapter_quest_id: Optional[str] = None
    chapter_id: Optional[str] = None
    adventure_id: Optional[str] = None
    source: Optional[str] = None

    model: str = "unknown"
    request_json: JsonDict = field(default_factory=dict)
    context_json: JsonDict = field(default_factory=dict)
    started_at: Optional[str] = None

    def to_row(
        self,
        *,
        status: str,
        finished_at: str,
        duration_ms: int,
        parsed_json: Optional[JsonDict] = None,
        rendered_md: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> JsonDict:
        ctx = current_context()
        message = getattr(error, "message", None) or (str(error) if error else None)
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "chapter_quest_id": self.chapter_quest_id,
            "chapter_id": self.chapter_id,
            "adventure_id": self.adventure_id,
            "generation_type": self.generation_type,
            "source": self.source,
            "provider": DEFAULT_PROVIDER,
            "model": self.model,
            "status": status,
            "error_message": message,
            "error_code": type(error).__name__ if error else None,
            "started_at": self.started_at,
            "finished_at": finished_at,
            "duration_ms": duration_ms,
            "request_json": self.request_json,
            "context_json": self.context_json,
            "parsed_json": parsed_json,
            "rendered_md": rendered_md,
            "metadata": {"request_id": ctx.request_id, "job_id": ctx.job_id} if ctx else {},
        }


class GenerationLogService:
    def __init__(self, supabase: Client):
        self.sb = supabase

    def record(self, row: JsonDict) -> None:
        try:
            run_query(
                "ai_generations insert",
                lambda: self.sb.table("ai_generations").insert(row).execute(),
            )
        except StorageError as e:
            logger.warning(
                "ai_generations.insert.error type=%s status=%s: %s",
                row.get("generation_type"), row.get("status"), e.message,
            )
            return
        logger.info(
            "ai_generations.insert.ok type=%s status=%s ms=%s",
            row.get("generation_type"), row.get("status"), row.get("duration_ms"),
        )

    def list_for_user(
        self,
        user_id: str,
        *,
        session_id: Optional[str] = None,
        generation_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[JsonDict]:
        """Newest first."""
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))

        def _query():
            q = self.sb.table("ai_generations").select("*").eq("user_id", user_id)
            if session_id:
                q = q.eq("session_id", session_id)
            if generation_type:
                q = q.eq("generation_type", generation_type)
            if status:
                q = q.eq("status", status)
            return q.order("created_at", desc=True).limit(limit).execute()

        return list(run_query("ai_generations list", _query).data or [])

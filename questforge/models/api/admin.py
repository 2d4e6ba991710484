"""Pydantic models for the /admin router."""
from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str             # "ok" | "degraded"
    supabase: bool          # every checked table answered
    openai: bool
    qstash: bool
    worker: bool            # APP_URL and WORKER_SECRET set, so jobs can be dispatched
    tables: Dict[str, bool] = {}
    detail: Optional[str] = None

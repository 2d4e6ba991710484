"""Pydantic models for the /ai/generations router."""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel


class GenerationLogListResponse(BaseModel):
    items: List[Dict[str, Any]]

"""Pydantic models for the /session router."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from questforge.models.domain.sessions import GameSession


class SessionActionRequest(BaseModel):
    """POST /session/active — create a new active session or activate an existing one."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["create", "activate"]
    title: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class SessionResponse(BaseModel):
    session: Optional[GameSession] = None

"""Domain models for game sessions (the player's save slot / tenant)."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

DEFAULT_SESSION_TITLE = "My adventure"

SESSION_COLUMNS = "id,user_id,title,is_active,status,created_at,updated_at"


class SessionStatus(str, Enum):
    active = "active"
    paused = "paused"
    archived = "archived"


class GameSessionCreate(BaseModel):
    """
    Insert intent for a session.

    Invariant: at most one row per user_id with is_active = true.
    """

    user_id: str
    title: str = DEFAULT_SESSION_TITLE
    is_active: bool = True
    status: SessionStatus = SessionStatus.active


class GameSession(GameSessionCreate):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

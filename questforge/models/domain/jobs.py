"""Domain models for asynchronous generation jobs (ai_jobs table)."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

JsonDict = Dict[str, Any]

DEFAULT_PRIORITY = 50


class JobType(str, Enum):
    quest_mission = "quest_mission"
    quest_congrat = "quest_congrat"
    quest_encouragement = "quest_encouragement"
    chapter_story = "chapter_story"


class JobStatus(str, Enum):
    queued = "queued"      # pending: inserted, waiting for (or awaiting re-) delivery
    running = "running"
    done = "done"
    error = "error"


class JobSpec(BaseModel):
    """Enqueue intent. Owning actor, job type and payload are mandatory."""

    user_id: str
    job_type: JobType
    payload: JsonDict

    session_id: Optional[str] = None
    adventure_id: Optional[str] = None
    chapter_id: Optional[str] = None
    chapter_quest_id: Optional[str] = None

    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=100)

    @field_validator("user_id")
    @classmethod
    def _user_id_not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("user_id must not be empty")
        return v

    def to_row(self) -> JsonDict:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "adventure_id": self.adventure_id,
            "chapter_id": self.chapter_id,
            "chapter_quest_id": self.chapter_quest_id,
            "job_type": self.job_type.value,
            "priority": self.priority,
            "payload": self.payload,
            "status": JobStatus.queued.value,
            "attempts": 0,
        }


class JobRow(BaseModel):
    """Full ai_jobs row."""

    id: str
    user_id: str
    session_id: Optional[str] = None
    adventure_id: Optional[str] = None
    chapter_id: Optional[str] = None
    chapter_quest_id: Optional[str] = None

    job_type: str
    priority: int = DEFAULT_PRIORITY
    payload: JsonDict = Field(default_factory=dict)

    status: JobStatus = JobStatus.queued
    attempts: int = 0
    result: Optional[JsonDict] = None
    error_message: Optional[str] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

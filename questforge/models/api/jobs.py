"""Pydantic models for the /ai/jobs and /ai/worker routers."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from questforge.models.domain.jobs import DEFAULT_PRIORITY, JobRow, JobType


class EnqueueJobRequest(BaseModel):
    """Request body for POST /ai/jobs/enqueue. The job runs in the caller's active session."""

    job_type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)

    adventure_id: Optional[str] = None
    chapter_id: Optional[str] = None
    chapter_quest_id: Optional[str] = None

    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=100)


class EnqueueJobResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: str = "queued"


class JobListResponse(BaseModel):
    items: List[JobRow] = Field(default_factory=list)


class WorkerRunRequest(BaseModel):
    """Body QStash delivers to POST /ai/worker/run."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId", min_length=1)
    worker_secret: Optional[str] = Field(default=None, alias="workerSecret")

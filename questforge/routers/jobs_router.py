"""
/ai/jobs router
---------------
Background generation jobs.

POST /ai/jobs/enqueue          — Persist a queued job and dispatch it (202)
GET  /ai/jobs                  — The caller's jobs, newest first
GET  /ai/jobs/{job_id}         — One job (status, attempts, result, error)
POST /ai/jobs/{job_id}/retry   — Re-dispatch a failed or undelivered job (202)
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from supabase import Client

from questforge.models.api.jobs import EnqueueJobRequest, EnqueueJobResponse, JobListResponse
from questforge.models.domain.jobs import JobRow, JobSpec
from questforge.routers.dependencies import get_queue_publisher
from questforge.services.auth_service import get_current_user_id
from questforge.services.errors import JobNotFound
from questforge.services.job_service import JobService
from questforge.services.qstash_service import QueuePublisher
from questforge.services.session_service import SessionService
from questforge.supabase.supabase_client import get_supabase

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai/jobs", tags=["jobs"])


# ── POST /ai/jobs/enqueue ─────────────────────────────────────────────────────

@router.post("/enqueue", response_model=EnqueueJobResponse, response_model_by_alias=True, status_code=202)
def enqueue_job(
    req: EnqueueJobRequest,
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
    publisher: QueuePublisher = Depends(get_queue_publisher),
) -> EnqueueJobResponse:
    """
    Create the job and hand it to the queue. Returns as soon as the job row
    exists and the publish call returned; generation happens in the worker.
    """
    session = SessionService(sb).resolve_active_session(user_id)
    spec = JobSpec(
        user_id=user_id,
        session_id=session.id,
        job_type=req.job_type,
        payload=req.payload,
        adventure_id=req.adventure_id,
        chapter_id=req.chapter_id,
        chapter_quest_id=req.chapter_quest_id,
        priority=req.priority,
    )
    job_id = JobService(sb, publisher).enqueue(spec)
    return EnqueueJobResponse(job_id=job_id, status="queued")


# ── GET /ai/jobs ──────────────────────────────────────────────────────────────

@router.get("", response_model=JobListResponse)
def list_jobs(
    status: Optional[str] = Query(None),
    job_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
    publisher: QueuePublisher = Depends(get_queue_publisher),
) -> JobListResponse:
    items = JobService(sb, publisher).list_jobs(user_id, status=status, job_type=job_type, limit=limit)
    return JobListResponse(items=items)


# ── GET /ai/jobs/{job_id} ─────────────────────────────────────────────────────

@router.get("/{job_id}", response_model=JobRow)
def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
    publisher: QueuePublisher = Depends(get_queue_publisher),
) -> JobRow:
    """404 for unknown ids and for jobs of other users alike."""
    job = JobService(sb, publisher).get_job(job_id)
    if job.user_id != user_id:
        raise JobNotFound(job_id)
    return job


# ── POST /ai/jobs/{job_id}/retry ──────────────────────────────────────────────

@router.post("/{job_id}/retry", response_model=JobRow, status_code=202)
def retry_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    sb: Client = Depends(get_supabase),
    publisher: QueuePublisher = Depends(get_queue_publisher),
) -> JobRow:
    return JobService(sb, publisher).redispatch(job_id, user_id)

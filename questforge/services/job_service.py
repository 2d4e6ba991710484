"""
questforge/services/job_service.py
----------------------------------
Durable generation jobs (``ai_jobs``) and their dispatch through QStash.

enqueue() inserts the job row first and publishes second. The row is the
source of truth: if the publish fails the row stays ``queued`` and the error
goes back to the caller, who can re-dispatch it later. Nothing is rolled back.

The worker side (claim / mark_done / mark_error) is used by WorkerService.
"""
from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.models.domain._time import utcnow, utcnow_iso
from questforge.models.domain.jobs import JobRow, JobSpec, JobStatus, JobType
from questforge.services.errors import BadRequest, JobNotFound, QueuePublishError, StorageError
from questforge.services.qstash_service import QStashService, QueuePublisher
from questforge.supabase.supabase_client import first_row, run_lookup, run_query

logger = logging.getLogger(__name__)

WORKER_PATH = "/ai/worker/run"
MAX_LIST_LIMIT = 200

# A job left `running` this long is treated as abandoned (worker died or
# could not record its outcome) and may be claimed again.
STALE_RUNNING_AFTER = timedelta(minutes=15)

# Column (and payload key) naming the target entity of each job type.
ENTITY_KEY_BY_JOB_TYPE: Dict[JobType, str] = {
    JobType.quest_mission: "chapter_quest_id",
    JobType.quest_congrat: "chapter_quest_id",
    JobType.quest_encouragement: "chapter_quest_id",
    JobType.chapter_story: "chapter_id",
}


def _ms_since(t0: float) -> int:
    return max(0, int((time.monotonic() - t0) * 1000))


def is_stale(job: JobRow, now: Optional[datetime] = None) -> bool:
    if job.status is not JobStatus.running:
        return False
    if job.started_at is None:
        return True
    started = job.started_at if job.started_at.tzinfo else job.started_at.replace(tzinfo=timezone.utc)
    return (now or utcnow()) - started >= STALE_RUNNING_AFTER


def build_worker_url() -> str:
    base = os.environ.get("APP_URL", "").strip().rstrip("/")
    if not base:
        raise RuntimeError("APP_URL must be set to dispatch jobs")
    return base + WORKER_PATH


def worker_secret() -> str:
    return os.environ.get("WORKER_SECRET", "")


class JobService:
    """Creates, lists and dispatches jobs; records worker outcomes."""

    def __init__(self, supabase: Client, publisher: Optional[QueuePublisher] = None):
        self.sb = supabase
        self.publisher = publisher or QStashService()

    # ── Enqueue ───────────────────────────────────────────────────────────────

    @staticmethod
    def _normalize(spec: JobSpec) -> JobSpec:
        """The target entity id must be present; mirror it into payload and column."""
        key = ENTITY_KEY_BY_JOB_TYPE[spec.job_type]
        entity_id = spec.payload.get(key) or getattr(spec, key)
        if not entity_id:
            raise BadRequest(f"Missing payload.{key} for job_type={spec.job_type.value}")
        payload = dict(spec.payload, **{key: str(entity_id)})
        return spec.model_copy(update={"payload": payload, key: str(entity_id)})

    def enqueue(self, spec: JobSpec) -> str:
        """
        Insert a queued job and publish it to the worker. Returns the job id.

        Does not wait for the job: the worker is called back later by QStash.
        """
        spec = self._normalize(spec)
        worker_url = build_worker_url()
        secret = worker_secret()
        if not secret:
            raise QueuePublishError("WORKER_SECRET is not set")

        patch_context(
            user_id=spec.user_id,
            session_id=spec.session_id,
            adventure_id=spec.adventure_id,
            chapter_id=spec.chapter_id,
            chapter_quest_id=spec.chapter_quest_id,
        )

        q0 = time.monotonic()
        try:
            res = run_query(
                "ai_jobs insert",
                lambda: self.sb.table("ai_jobs").insert(spec.to_row()).execute(),
            )
        except StorageError:
            logger.exception("ai_jobs.enqueue.insert.error job_type=%s", spec.job_type.value)
            raise
        row = first_row(res)
        if row is None:
            raise StorageError("ai_jobs insert returned no row")

        job_id = str(row["id"])
        patch_context(job_id=job_id)
        logger.info(
            "ai_jobs.enqueue.insert.ok job_type=%s priority=%d ms=%d",
            spec.job_type.value, spec.priority, _ms_since(q0),
        )

        self._publish(job_id, worker_url, secret, deduplication_id=job_id)
        return job_id

    def _publish(self, job_id: str, worker_url: str, secret: str, *, deduplication_id: str) -> None:
        p0 = time.monotonic()
        try:
            self.publisher.publish_json(
                worker_url,
                {"jobId": job_id, "workerSecret": secret},
                deduplication_id=deduplication_id,
            )
        except QueuePublishError as e:
            logger.error("ai_jobs.publish.error job=%s: %s", job_id, e.message)
            raise QueuePublishError(f"{e.message} (job {job_id} left queued)") from e
        logger.info("ai_jobs.publish.ok dedup=%s ms=%d", deduplication_id, _ms_since(p0))

    def redispatch(self, job_id: str, user_id: str) -> JobRow:
        """
        Manually re-enqueue a job that failed, was never delivered, or was
        abandoned in `running` (see STALE_RUNNING_AFTER).

        Resets it to queued and republishes with a fresh deduplication id so
        the queue does not suppress it as a duplicate of the first publish.
        """
        job = self.get_job(job_id)
        if job.user_id != user_id:
            raise JobNotFound(job_id)
        if job.status not in (JobStatus.error, JobStatus.queued) and not is_stale(job):
            raise BadRequest(
                f"Job {job_id} is {job.status.value}; only queued, failed or stale running jobs can be retried"
            )

        worker_url = build_worker_url()
        secret = worker_secret()
        if not secret:
            raise QueuePublishError("WORKER_SECRET is not set")

        patch_context(job_id=job_id)
        updated = self._update(
            job_id,
            {"status": JobStatus.queued.value, "finished_at": None},
            only_if={"status": job.status.value},
        )
        if updated is None:
            raise BadRequest(f"Job {job_id} changed while being retried; try again")
        self._publish(job_id, worker_url, secret, deduplication_id=f"{job_id}:retry:{job.attempts}")
        return updated

    # ── Read ──────────────────────────────────────────────────────────────────

    def find_job(self, job_id: str) -> Optional[JobRow]:
        res = run_lookup(
            "ai_jobs read",
            lambda: self.sb.table("ai_jobs").select("*").eq("id", str(job_id)).limit(1).execute(),
        )
        row = first_row(res)
        return JobRow(**row) if row else None

    def get_job(self, job_id: str) -> JobRow:
        job = self.find_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[JobRow]:
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))

        def _query():
            q = self.sb.table("ai_jobs").select("*").eq("user_id", user_id)
            if status:
                q = q.eq("status", status)
            if job_type:
                q = q.eq("job_type", job_type)
            return q.order("created_at", desc=True).limit(limit).execute()

        res = run_query("ai_jobs list", _query)
        return [JobRow(**r) for r in (res.data or [])]

    # ── Worker side ───────────────────────────────────────────────────────────

    def _update(
        self, job_id: str, fields: Dict[str, Any], *, only_if: Optional[Dict[str, Any]] = None
    ) -> Optional[JobRow]:
        """Update one job; with only_if, only while those columns still hold those values."""
        fields = dict(fields, updated_at=utcnow_iso())

        def _query():
            q = self.sb.table("ai_jobs").update(fields).eq("id", str(job_id))
            for column, value in (only_if or {}).items():
                q = q.eq(column, value)
            return q.execute()

        row = first_row(run_query("ai_jobs update", _query))
        return JobRow(**row) if row else None

    def claim(self, job: JobRow) -> Optional[JobRow]:
        """
        Move the job to running if it is still as we saw it. None if someone
        else won. A stale running job is reclaimed only if its started_at is
        unchanged, so two redeliveries cannot both take it over.
        """
        only_if: Dict[str, Any] = {"status": job.status.value}
        if job.status is JobStatus.running and job.started_at is not None:
            only_if["started_at"] = job.started_at.isoformat()
        return self._update(
            job.id,
            {"status": JobStatus.running.value, "started_at": utcnow_iso(), "error_message": None},
            only_if=only_if,
        )

    def mark_done(self, job_id: str, result: Dict[str, Any]) -> Optional[JobRow]:
        return self._update(job_id, {
            "status": JobStatus.done.value,
            "finished_at": utcnow_iso(),
            "result": result,
            "error_message": None,
        })

    def mark_error(self, job: JobRow, message: str) -> Optional[JobRow]:
        return self._update(job.id, {
            "status": JobStatus.error.value,
            "attempts": (job.attempts or 0) + 1,
            "finished_at": utcnow_iso(),
            "error_message": message,
        })

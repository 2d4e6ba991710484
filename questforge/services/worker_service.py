"""
questforge/services/worker_service.py
-------------------------------------
Executes a job when QStash calls the worker endpoint back.

Delivery is at-least-once, so the same job id can arrive more than once:

  - only a queued job runs; one already done, failed or being run by
    another delivery is acknowledged and skipped, except a `running` job
    gone stale (its worker died or could not record the outcome), which is
    reclaimed;
  - a job that does run goes through the generation cache, so re-running it
    converges on the stored artifact instead of calling the model again,
    unless its payload asks for ``force``.

Failures are recorded on the job row and are final for this delivery; the
response is still 2xx so QStash does not redeliver. Retrying is a manual
re-dispatch (JobService.redispatch).
"""
from __future__ import annotations

import hmac
import logging
from typing import Any, Callable, Dict, Optional

from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.models.domain.jobs import JobRow, JobStatus, JobType
from questforge.services.artifact_kinds import KIND_BY_JOB_TYPE
from questforge.services.artifact_service import ArtifactService
from questforge.services.errors import BadRequest, QuestForgeError, Unauthorized
from questforge.services.job_service import ENTITY_KEY_BY_JOB_TYPE, JobService, is_stale, worker_secret
from questforge.services.llm_service import TextGenerator

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]
JobHandler = Callable[[JobRow], JsonDict]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


class WorkerService:
    """Authenticates a callback, loads the job and runs its handler."""

    def __init__(
        self,
        supabase: Client,
        text_generator: Optional[TextGenerator] = None,
        job_service: Optional[JobService] = None,
    ):
        self.sb = supabase
        self.jobs = job_service or JobService(supabase)
        self.artifacts = ArtifactService(supabase, text_generator)
        self.handlers: Dict[str, JobHandler] = {
            job_type.value: self._generation_handler(job_type) for job_type in KIND_BY_JOB_TYPE
        }

    # ── Handlers ──────────────────────────────────────────────────────────────

    def _generation_handler(self, job_type: JobType) -> JobHandler:
        kind = KIND_BY_JOB_TYPE[job_type]
        entity_key = ENTITY_KEY_BY_JOB_TYPE[job_type]

        def handle(job: JobRow) -> JsonDict:
            entity_id = job.payload.get(entity_key) or getattr(job, entity_key)
            if not entity_id:
                raise BadRequest(f"Missing payload.{entity_key}")
            if not job.session_id:
                raise BadRequest("Job has no session_id")
            result = self.artifacts.generate(
                kind,
                str(entity_id),
                job.session_id,
                user_id=job.user_id,
                force=_as_bool(job.payload.get("force", False)),
            )
            return {
                "kind": kind.name,
                entity_key: str(entity_id),
                "cached": result.cached,
                "model": result.record.model,
                "updated_at": result.record.updated_at.isoformat() if result.record.updated_at else None,
            }

        return handle

    # ── Callback ──────────────────────────────────────────────────────────────

    @staticmethod
    def check_secret(presented: Optional[str]) -> None:
        expected = worker_secret()
        if not expected or not presented or not hmac.compare_digest(str(presented), expected):
            raise Unauthorized()

    def handle_callback(self, job_id: str, presented_secret: Optional[str]) -> JsonDict:
        """
        Run one delivery of ``job_id``.

        Raises Unauthorized (bad secret, no state change) and JobNotFound.
        Returns a small status dict otherwise, including when the job failed.
        """
        self.check_secret(presented_secret)
        patch_context(job_id=job_id)

        job = self.jobs.get_job(job_id)
        patch_context(
            user_id=job.user_id,
            session_id=job.session_id,
            adventure_id=job.adventure_id,
            chapter_id=job.chapter_id,
            chapter_quest_id=job.chapter_quest_id,
        )

        if job.status is not JobStatus.queued and not is_stale(job):
            logger.info("worker.skip status=%s", job.status.value)
            return {"ok": True, "jobId": job.id, "status": job.status.value, "skipped": True}
        if job.status is JobStatus.running:
            logger.warning("worker.reclaim.stale started_at=%s", job.started_at)

        claimed = self.jobs.claim(job)
        if claimed is None:
            logger.info("worker.skip.claim_lost")
            return {"ok": True, "jobId": job.id, "status": "skipped", "skipped": True}

        handler = self.handlers.get(claimed.job_type)
        try:
            if handler is None:
                raise BadRequest(f"Unknown job_type: {claimed.job_type}")
            result = handler(claimed)
        except QuestForgeError as e:
            logger.warning("worker.job.error job_type=%s: %s", claimed.job_type, e.message)
            return self._fail(claimed, e.message)
        except Exception as e:
            logger.exception("worker.job.fatal job_type=%s", claimed.job_type)
            return self._fail(claimed, str(e))

        try:
            self.jobs.mark_done(claimed.id, result)
        except QuestForgeError as e:
            # The artifact is stored; a retry of this job is served from the cache.
            logger.exception("worker.job.mark_done.error")
            return self._fail(claimed, f"Could not record result: {e.message}")

        logger.info("worker.job.done job_type=%s cached=%s", claimed.job_type, result.get("cached"))
        return {"ok": True, "jobId": job.id, "status": JobStatus.done.value, "result": result}

    def _fail(self, job: JobRow, message: str) -> JsonDict:
        """
        Record the failure on the job. If even that write fails the job stays
        running; it becomes reclaimable once stale, and the error propagates so
        the delivery is retried.
        """
        self.jobs.mark_error(job, message)
        return {"ok": False, "jobId": job.id, "status": JobStatus.error.value, "error": message}

"""
/ai/worker router
-----------------
QStash callback target. Not called by players.

POST /ai/worker/run   body {jobId, workerSecret}
  200  processed, skipped, or failed (failure is recorded on the job)
  401  bad or missing worker secret, job untouched
  404  unknown job id
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.models.api.jobs import WorkerRunRequest
from questforge.routers.dependencies import get_queue_publisher, get_text_generator
from questforge.services.job_service import JobService
from questforge.services.llm_service import TextGenerator
from questforge.services.qstash_service import QueuePublisher
from questforge.services.worker_service import WorkerService
from questforge.supabase.supabase_client import get_supabase

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai/worker", tags=["worker"])


@router.post("/run")
def run_job(
    req: WorkerRunRequest,
    sb: Client = Depends(get_supabase),
    text_generator: TextGenerator = Depends(get_text_generator),
    publisher: QueuePublisher = Depends(get_queue_publisher),
) -> Dict[str, Any]:
    patch_context(job_id=req.job_id)
    worker = WorkerService(sb, text_generator, JobService(sb, publisher))
    return worker.handle_callback(req.job_id, req.worker_secret)

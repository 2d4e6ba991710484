from datetime import timedelta

import pytest

from conftest import WORKER_SECRET
from questforge.models.domain._time import utcnow
from questforge.models.domain.jobs import JobSpec, JobType
from questforge.services.errors import BadRequest, JobNotFound, StorageError, Unauthorized
from questforge.services.job_service import JobService
from questforge.services.worker_service import WorkerService


@pytest.fixture
def jobs(sb, publisher):
    return JobService(sb, publisher)


@pytest.fixture
def worker(sb, generator, jobs):
    return WorkerService(sb, generator, jobs)


def _enqueue(jobs, world, job_type=JobType.quest_mission, **payload):
    payload.setdefault("chapter_quest_id", world["chapter_quest_id"])
    return jobs.enqueue(JobSpec(
        user_id=world["user_id"],
        session_id=world["session_id"],
        job_type=job_type,
        payload=payload,
    ))


def test_runs_a_queued_job_and_stores_the_artifact(sb, world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)

    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["ok"] is True
    assert out["status"] == "done"

    job = jobs.get_job(job_id)
    assert job.status.value == "done"
    assert job.result["cached"] is False
    assert job.result["chapter_quest_id"] == "Q123"
    assert len(generator.calls) == 1
    assert len(sb.rows("quest_mission_orders", chapter_quest_id="Q123")) == 1


def test_wrong_secret_is_rejected_without_touching_the_job(world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)
    with pytest.raises(Unauthorized):
        worker.handle_callback(job_id, "not-the-secret")
    with pytest.raises(Unauthorized):
        worker.handle_callback(job_id, None)
    assert jobs.get_job(job_id).status.value == "queued"
    assert generator.calls == []


def test_unset_worker_secret_rejects_every_callback(world, worker, jobs, monkeypatch):
    job_id = _enqueue(jobs, world)
    monkeypatch.setenv("WORKER_SECRET", "")
    with pytest.raises(Unauthorized):
        worker.handle_callback(job_id, "")


def test_unknown_job_is_not_found(worker):
    with pytest.raises(JobNotFound):
        worker.handle_callback("no-such-job", WORKER_SECRET)


def test_duplicate_delivery_calls_the_provider_once(sb, world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)
    worker.handle_callback(job_id, WORKER_SECRET)
    again = worker.handle_callback(job_id, WORKER_SECRET)

    assert again["skipped"] is True
    assert len(generator.calls) == 1
    assert len(sb.rows("quest_mission_orders")) == 1


def test_requeued_job_is_served_from_the_cache(world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)
    worker.handle_callback(job_id, WORKER_SECRET)

    jobs._update(job_id, {"status": "queued"})
    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["result"]["cached"] is True
    assert len(generator.calls) == 1


def test_force_in_payload_regenerates(world, worker, jobs, generator):
    worker.handle_callback(_enqueue(jobs, world), WORKER_SECRET)
    worker.handle_callback(_enqueue(jobs, world, force=True), WORKER_SECRET)
    assert len(generator.calls) == 2


def test_failure_is_recorded_and_acknowledged(world, worker, jobs, generator):
    generator.error = RuntimeError("provider down")
    job_id = _enqueue(jobs, world)

    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["ok"] is False
    job = jobs.get_job(job_id)
    assert job.status.value == "error"
    assert job.attempts == 1
    assert "provider down" in job.error_message

    # A failed job is not re-run by a late duplicate delivery...
    assert worker.handle_callback(job_id, WORKER_SECRET)["skipped"] is True

    # ...only by an explicit re-dispatch.
    generator.error = None
    jobs.redispatch(job_id, world["user_id"])
    assert worker.handle_callback(job_id, WORKER_SECRET)["status"] == "done"
    assert jobs.get_job(job_id).attempts == 1


def test_job_for_a_foreign_entity_fails_cleanly(sb, world, worker, jobs, generator):
    other = sb.seed("chapter_quests", chapter_id=world["chapter_id"], session_id="other-session")
    job_id = _enqueue(jobs, world, chapter_quest_id=other["id"])

    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["ok"] is False
    assert jobs.get_job(job_id).status.value == "error"
    assert generator.calls == []


def test_chapter_story_job(sb, world, worker, jobs):
    job_id = jobs.enqueue(JobSpec(
        user_id=world["user_id"],
        session_id=world["session_id"],
        job_type=JobType.chapter_story,
        payload={"chapter_id": world["chapter_id"]},
    ))
    assert worker.handle_callback(job_id, WORKER_SECRET)["status"] == "done"
    assert len(sb.rows("chapter_stories", chapter_id=world["chapter_id"])) == 1


def _strand_running(sb, job_id, minutes_ago):
    started = (utcnow() - timedelta(minutes=minutes_ago)).isoformat()
    with sb.lock:
        for row in sb.tables["ai_jobs"]:
            if row["id"] == job_id:
                row.update(status="running", started_at=started)
    return started


def test_result_write_failure_marks_the_job_failed(sb, world, worker, jobs, generator, monkeypatch):
    job_id = _enqueue(jobs, world)
    real_mark_done = jobs.mark_done

    def broken_mark_done(job_id, result):
        raise StorageError("ai_jobs update failed: connection reset")

    monkeypatch.setattr(jobs, "mark_done", broken_mark_done)
    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["ok"] is False
    assert "Could not record result" in out["error"]
    assert jobs.get_job(job_id).status.value == "error"

    # The artifact was stored, so a retry is served from the cache.
    monkeypatch.setattr(jobs, "mark_done", real_mark_done)
    jobs.redispatch(job_id, world["user_id"])
    again = worker.handle_callback(job_id, WORKER_SECRET)
    assert again["status"] == "done"
    assert again["result"]["cached"] is True
    assert len(generator.calls) == 1


def test_failure_write_error_propagates_and_leaves_job_running(world, worker, jobs, monkeypatch):
    job_id = _enqueue(jobs, world)

    def broken(*_args, **_kwargs):
        raise StorageError("ai_jobs update failed: connection reset")

    monkeypatch.setattr(jobs, "mark_done", broken)
    monkeypatch.setattr(jobs, "mark_error", broken)
    with pytest.raises(StorageError):
        worker.handle_callback(job_id, WORKER_SECRET)
    assert jobs.get_job(job_id).status.value == "running"


def test_fresh_running_job_is_left_alone(sb, world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)
    _strand_running(sb, job_id, minutes_ago=1)

    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["skipped"] is True
    assert generator.calls == []
    with pytest.raises(BadRequest):
        jobs.redispatch(job_id, world["user_id"])


def test_stale_running_job_is_reclaimed_on_redelivery(sb, world, worker, jobs, generator):
    job_id = _enqueue(jobs, world)
    _strand_running(sb, job_id, minutes_ago=60)

    out = worker.handle_callback(job_id, WORKER_SECRET)
    assert out["status"] == "done"
    assert len(generator.calls) == 1
    assert jobs.get_job(job_id).status.value == "done"


def test_stale_running_job_can_be_redispatched(sb, world, jobs, publisher):
    job_id = _enqueue(jobs, world)
    _strand_running(sb, job_id, minutes_ago=60)

    requeued = jobs.redispatch(job_id, world["user_id"])
    assert requeued.status.value == "queued"
    assert publisher.published[-1]["deduplication_id"] == f"{job_id}:retry:0"


def test_stale_reclaim_loses_to_a_concurrent_reclaim(sb, world, jobs):
    job_id = _enqueue(jobs, world)
    _strand_running(sb, job_id, minutes_ago=60)
    seen = jobs.get_job(job_id)

    assert jobs.claim(seen) is not None
    assert jobs.claim(seen) is None


def test_malformed_job_id_is_not_found(sb, worker):
    sb.fail("ai_jobs", "select", message='invalid input syntax for type uuid: "nope"', code="22P02")
    with pytest.raises(JobNotFound):
        worker.handle_callback("nope", WORKER_SECRET)


def test_other_lookup_errors_still_surface(sb, worker):
    sb.fail("ai_jobs", "select", message="connection refused", code="08006")
    with pytest.raises(StorageError):
        worker.handle_callback("nope", WORKER_SECRET)

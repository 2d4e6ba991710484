import asyncio
import threading

from questforge.helpers.request_context import (
    arun_with_context,
    current_context,
    patch_context,
    request_scope,
    run_with_context,
)


def test_current_context_is_none_outside_a_scope():
    assert current_context() is None


def test_patch_outside_a_scope_is_a_noop():
    patch_context(user_id="u1", session_id="s1")
    assert current_context() is None


def test_scope_generates_request_id_and_restores_previous():
    with request_scope(route="/outer") as outer:
        assert outer.request_id
        with request_scope(request_id="inner-id", route="/inner") as inner:
            assert current_context() is inner
            assert inner.request_id == "inner-id"
        assert current_context() is outer
    assert current_context() is None


def test_patch_merges_non_null_fields_and_extras():
    with request_scope(user_id="u1") as ctx:
        patch_context(session_id="s1", user_id=None, chapter_quest_id=123, attempt=2)
        assert ctx.user_id == "u1"
        assert ctx.session_id == "s1"
        assert ctx.chapter_quest_id == "123"
        assert ctx.extra == {"attempt": 2}
        assert ctx.as_log_fields()["attempt"] == 2


def test_run_with_context_tears_down_on_failure():
    def boom():
        patch_context(job_id="j1")
        raise ValueError("boom")

    try:
        run_with_context({"user_id": "u1"}, boom)
    except ValueError:
        pass
    assert current_context() is None


def test_threads_get_isolated_contexts():
    seen = {}
    barrier = threading.Barrier(8)

    def worker(i):
        def body():
            patch_context(user_id=f"user-{i}")
            barrier.wait()
            patch_context(session_id=f"session-{i}")
            barrier.wait()
            ctx = current_context()
            seen[i] = (ctx.user_id, ctx.session_id)

        run_with_context({"request_id": f"req-{i}"}, body)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert seen == {i: (f"user-{i}", f"session-{i}") for i in range(8)}


def test_asyncio_tasks_get_isolated_contexts():
    async def handler(i):
        patch_context(user_id=f"user-{i}")
        await asyncio.sleep(0)
        await nested(i)
        await asyncio.sleep(0)
        ctx = current_context()
        return ctx.request_id, ctx.user_id, ctx.chapter_id

    async def nested(i):
        await asyncio.sleep(0)
        patch_context(chapter_id=f"chapter-{i}")

    async def main():
        return await asyncio.gather(*[
            arun_with_context({"request_id": f"req-{i}"}, handler, i) for i in range(10)
        ])

    results = asyncio.run(main())
    assert results == [(f"req-{i}", f"user-{i}", f"chapter-{i}") for i in range(10)]

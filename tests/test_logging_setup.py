import logging
import sys
import threading

from questforge.helpers.logging_setup import (
    LOG_FORMAT,
    RequestContextFilter,
    SystemLogHandler,
    SystemLogQueueHandler,
    install_system_log_sink,
)
from questforge.helpers.request_context import request_scope


def _record(msg="generation.cache.hit kind=%s", args=("quest_mission",), exc_info=None):
    return logging.LogRecord("questforge.test", logging.INFO, __file__, 10, msg, args, exc_info)


def test_filter_without_scope_uses_dash():
    record = _record()
    assert RequestContextFilter().filter(record)
    assert record.request_id == "-"
    assert record.ctx == ""


def test_filter_stamps_request_id_and_suffix():
    record = _record()
    with request_scope(request_id="r-1", user_id="u1", session_id="s1", job_id="j1"):
        RequestContextFilter().filter(record)
    assert record.request_id == "r-1"
    assert record.ctx == "  user=u1 session=s1 job=j1"

    line = logging.Formatter(LOG_FORMAT).format(record)
    assert "[r-1] generation.cache.hit kind=quest_mission  user=u1" in line


class _Table:
    def __init__(self, sink, fail):
        self.sink, self.fail = sink, fail

    def insert(self, row):
        row["_thread"] = threading.get_ident()
        self.sink.append(row)
        return self

    def execute(self):
        if self.fail:
            raise RuntimeError("store down")
        return None


class _Client:
    def __init__(self, fail=False):
        self.rows, self.fail = [], fail

    def table(self, name):
        assert name == "system_logs"
        return _Table(self.rows, self.fail)


def test_system_log_handler_writes_context_fields():
    client = _Client()
    handler = SystemLogHandler(lambda: client)
    with request_scope(request_id="r-2", route="/quest-mission", method="POST",
                       user_id="u1", chapter_quest_id="Q1", job_id="j9"):
        handler.emit(_record())

    row = client.rows[0]
    assert row["message"] == "generation.cache.hit kind=quest_mission"
    assert row["request_id"] == "r-2"
    assert row["route"] == "/quest-mission"
    assert row["chapter_quest_id"] == "Q1"
    assert row["metadata"]["job_id"] == "j9"
    assert row["duration_ms"] >= 0


def test_system_log_handler_records_exception_info():
    try:
        raise ValueError("bad json")
    except ValueError:
        record = _record("generation.invalid", (), sys.exc_info())
    row = SystemLogHandler(lambda: None).build_row(record)
    assert row["error_name"] == "ValueError"
    assert row["error_message"] == "bad json"
    assert "Traceback" in row["stack"]


def test_system_log_handler_failure_never_reaches_caller(monkeypatch):
    handled = []
    handler = SystemLogHandler(lambda: _Client(fail=True))
    monkeypatch.setattr(handler, "handleError", lambda record: handled.append(record))
    handler.emit(_record())
    assert len(handled) == 1


def test_queued_sink_inserts_off_the_calling_thread_with_captured_context():
    client = _Client()
    logger = logging.getLogger("questforge.test.queued")
    logger.setLevel(logging.INFO)
    listener = install_system_log_sink(lambda: client, logger_name="questforge.test.queued")
    try:
        with request_scope(request_id="r-3", route="/ai/jobs/enqueue", user_id="u1"):
            logger.info("job.enqueue.ok")
            try:
                raise ValueError("bad json")
            except ValueError:
                logger.exception("generation.invalid")
        logger.debug("below the sink level")
    finally:
        listener.stop()
        for h in [h for h in logger.handlers if isinstance(h, SystemLogQueueHandler)]:
            logger.removeHandler(h)

    assert [r["message"] for r in client.rows] == ["job.enqueue.ok", "generation.invalid"]
    assert all(r["request_id"] == "r-3" for r in client.rows)
    assert all(r["route"] == "/ai/jobs/enqueue" for r in client.rows)
    assert all(r["_thread"] != threading.get_ident() for r in client.rows)
    assert client.rows[1]["error_name"] == "ValueError"
    assert "Traceback" in client.rows[1]["stack"]

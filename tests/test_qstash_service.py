import httpx
import pytest

from questforge.services import qstash_service
from questforge.services.errors import QueuePublishError
from questforge.services.qstash_service import QStashService


class _Recorder:
    def __init__(self, status_code=201, error=None):
        self.calls = []
        self.status_code = status_code
        self.error = error

    def __call__(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json})
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"messageId": "m1"},
                              request=httpx.Request("POST", url))


def test_publish_builds_the_qstash_request(monkeypatch):
    rec = _Recorder()
    monkeypatch.setattr(qstash_service.httpx, "post", rec)

    out = QStashService(token="tok", base_url="https://qstash.example/").publish_json(
        "https://app.example/ai/worker/run", {"jobId": "j1"}, deduplication_id="j1",
    )
    assert out == {"messageId": "m1"}
    [call] = rec.calls
    assert call["url"] == "https://qstash.example/v2/publish/https%3A%2F%2Fapp.example%2Fai%2Fworker%2Frun"
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert call["headers"]["Upstash-Deduplication-Id"] == "j1"
    assert call["json"] == {"jobId": "j1"}


def test_missing_token_is_an_error(monkeypatch):
    monkeypatch.delenv("QSTASH_TOKEN", raising=False)
    svc = QStashService()
    assert svc.is_configured is False
    with pytest.raises(QueuePublishError):
        svc.publish_json("https://app.example/x", {})


@pytest.mark.parametrize("rec", [
    _Recorder(status_code=500),
    _Recorder(error=httpx.ConnectError("refused")),
])
def test_http_failures_become_publish_errors(monkeypatch, rec):
    monkeypatch.setattr(qstash_service.httpx, "post", rec)
    with pytest.raises(QueuePublishError):
        QStashService(token="tok").publish_json("https://app.example/x", {})

from __future__ import annotations

from datetime import datetime, timezone

import orjson
import pytest
import requests

from runwatch.github_client import GitHubClient, RequestFailed
from runwatch.settings import settings


RUN_PAYLOAD = {
    "id": 123,
    "name": "Build",
    "status": "completed",
    "conclusion": "success",
    "head_branch": "main",
    "head_sha": "abc1234567890",
    "created_at": "2024-05-01T10:00:00Z",
    "updated_at": "2024-05-01T10:05:00Z",
    "run_started_at": "2024-05-01T10:00:01Z",
    "html_url": "https://github.com/octo/hello/actions/runs/123",
}


def _response(status: int, body=None, headers=None, raw: bytes | None = None) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r._content = raw if raw is not None else (orjson.dumps(body) if body is not None else b"")
    r.encoding = "utf-8"
    r.headers.update(headers or {})
    return r


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "params": params})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def _client(session, sleeps=None, now=1_000.0):
    sleeps = sleeps if sleeps is not None else []
    return GitHubClient("octo", "hello", "t0ken", session=session, sleep=sleeps.append, clock=lambda: now)


def test_list_runs_parses_payload():
    session = FakeSession([_response(200, {"total_count": 1, "workflow_runs": [RUN_PAYLOAD]})])
    runs = _client(session).list_runs(2, 100)

    assert len(runs) == 1
    run = runs[0]
    assert run.id == 123
    assert run.head_sha == "abc1234567890"
    assert run.updated_at == datetime(2024, 5, 1, 10, 5, tzinfo=timezone.utc)

    req = session.requests[0]
    assert req["url"].endswith("/repos/octo/hello/actions/runs")
    assert req["params"] == {"page": 2, "per_page": 100}
    assert req["headers"]["Authorization"] == "Bearer t0ken"
    assert req["headers"]["Accept"] == "application/vnd.github+json"


def test_get_run_and_jobs():
    jobs_body = {
        "total_count": 1,
        "jobs": [
            {
                "id": 9,
                "name": "test",
                "status": "in_progress",
                "conclusion": None,
                "started_at": "2024-05-01T10:01:00Z",
                "completed_at": None,
                "steps": [
                    {"name": "checkout", "status": "completed", "conclusion": "success", "number": 1,
                     "started_at": "2024-05-01T10:01:00Z", "completed_at": "2024-05-01T10:01:05Z"},
                ],
            },
            {"id": 10, "name": "lint", "status": "queued", "conclusion": None, "started_at": None,
             "completed_at": None, "steps": None},
        ],
    }
    session = FakeSession([_response(200, RUN_PAYLOAD), _response(200, jobs_body)])
    client = _client(session)

    run = client.get_run(123)
    jobs = client.get_jobs(123)

    assert run.name == "Build"
    assert session.requests[1]["url"].endswith("/actions/runs/123/jobs")
    assert [j.id for j in jobs] == [9, 10]
    assert jobs[0].steps[0].number == 1
    assert jobs[1].steps == []


def test_non_200_is_request_failed():
    session = FakeSession([_response(500, {"message": "boom"})])
    with pytest.raises(RequestFailed, match="500"):
        _client(session).get_run(1)


def test_forbidden_without_rate_limit_headers_is_not_retried():
    sleeps = []
    session = FakeSession([_response(403, {"message": "Resource not accessible"}, {"x-ratelimit-remaining": "12"})])
    with pytest.raises(RequestFailed):
        _client(session, sleeps).get_jobs(1)
    assert sleeps == []
    assert session.responses == []


def test_transport_error_is_request_failed():
    session = FakeSession([requests.ConnectionError("down")])
    with pytest.raises(RequestFailed, match="ConnectionError"):
        _client(session).list_runs(1, 100)


def test_bad_json_is_request_failed():
    session = FakeSession([_response(200, raw=b"<html>")])
    with pytest.raises(RequestFailed):
        _client(session).list_runs(1, 100)


def test_malformed_payload_is_request_failed():
    session = FakeSession([_response(200, {"workflow_runs": [{"id": "not-a-number"}]})])
    with pytest.raises(RequestFailed, match="workflow_runs"):
        _client(session).list_runs(1, 100)


def test_rate_limit_waits_until_reset():
    sleeps = []
    session = FakeSession(
        [
            _response(403, {"message": "API rate limit exceeded"},
                      {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1030"}),
            _response(200, RUN_PAYLOAD),
        ]
    )
    run = _client(session, sleeps, now=1_000.0).get_run(123)
    assert run.id == 123
    margin = float(settings.retries["reset_margin_s"])
    assert sleeps == [30.0 + margin]


def test_retry_after_header_is_honored():
    sleeps = []
    session = FakeSession([_response(429, {}, {"retry-after": "5"}), _response(200, RUN_PAYLOAD)])
    _client(session, sleeps).get_run(123)
    assert sleeps == [5.0 + float(settings.retries["reset_margin_s"])]


def test_reset_in_the_past_only_waits_margin():
    sleeps = []
    session = FakeSession(
        [
            _response(403, {}, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "900"}),
            _response(200, RUN_PAYLOAD),
        ]
    )
    _client(session, sleeps, now=1_000.0).get_run(123)
    assert sleeps == [float(settings.retries["reset_margin_s"])]


def test_rate_limit_gives_up_after_max_attempts(monkeypatch):
    monkeypatch.setitem(settings.retries, "max_attempts", 2)
    sleeps = []
    limited = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1010"}
    session = FakeSession([_response(403, {}, limited), _response(403, {}, limited)])
    with pytest.raises(RequestFailed, match="Gave up"):
        _client(session, sleeps).list_runs(1, 100)
    assert len(sleeps) == 1


def test_missing_token_rejected():
    with pytest.raises(RuntimeError):
        GitHubClient("octo", "hello", "")

"""End-to-end tests of the FastAPI adapter with a fake workflow engine.

The app is built through `create_app` exactly like `main` does, but with a
`FakeEngineClient` in place of the aiohttp adapter. Streams are read in full
by the TestClient and split into SSE frames; the disconnect case drives the
ASGI app directly so the client can leave mid-stream.
"""

import asyncio
import json
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from flowrelay.adapters.metrics_inmemory import InMemoryMetrics
from flowrelay.adapters.web.fastapi import create_app
from flowrelay.core.config import LauncherConfig, PollingConfig
from flowrelay.core.exceptions import TransportError
from flowrelay.core.interfaces.http_client import HttpClientPort
from flowrelay.core.interfaces.job_types import JobTypesPort
from flowrelay.core.managers.job_launcher import JobLauncher
from flowrelay.core.models.job_types import JobTypeConfig

BASE = "http://engine.test/"

FAST = PollingConfig(interval_tiers=((5, 0.001),), max_interval=0.001, error_interval=0.001)

JOB_TYPES = [
    JobTypeConfig(
        name="generate-messages",
        **{
            "trigger-path": "webhook/generer/messages",
            "routes": ["/webhook/generer/messages", "/api/generer/messages"],
            "payload-fields": ["id", "mode"],
            "defaults": {"mode": "generate"},
            "completed-message": "Messages generated",
        },
    ),
]


class StaticJobTypes(JobTypesPort):
    def load_job_types(self) -> None:  # pragma: no cover trivial
        pass

    def get_job_types(self):
        return list(JOB_TYPES)

    def get_job_type(self, name):
        return next((j for j in JOB_TYPES if j.name == name), None)

    def find_by_route(self, route):
        return next((j for j in JOB_TYPES if route in j.routes), None)


class FakeEngineClient(HttpClientPort):
    def __init__(self, posts: Dict[str, Any], gets: Dict[str, List[Any]]):
        self._posts = posts
        self._gets = {url: list(items) for url, items in gets.items()}
        self.posted: List[tuple[str, Any]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, json=None, timeout=None, headers=None):
        self.posted.append((url, json))
        return self._posts[url]

    async def get(self, url, timeout=None, headers=None):
        items = self._gets.get(url)
        if not items:
            raise TransportError("no route", url=url, code="ClientConnectorError")
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return {"status": 200, "headers": {}, "body": item}

    async def close(self):
        return None


def parse_sse(text: str) -> List[tuple[str, Dict[str, Any]]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def build_app(
    engine: FakeEngineClient,
    metrics: InMemoryMetrics | None = None,
    polling: PollingConfig = FAST,
):
    def factory(client):
        return JobLauncher(
            job_types=StaticJobTypes(),
            http_client=client,
            config=LauncherConfig(engine_base_url=BASE),
            polling_config=polling,
            metrics=metrics,
        )

    return create_app(
        job_launcher_factory=factory,
        http_client=engine,
        metrics=metrics,
        cors_origins=["*"],
    )


def build_client(engine: FakeEngineClient, metrics: InMemoryMetrics | None = None) -> TestClient:
    return TestClient(build_app(engine, metrics))


@pytest.fixture
def engine():
    return FakeEngineClient(
        posts={
            "http://engine.test/webhook/generer/messages": {
                "status": 200,
                "headers": {},
                "body": {"executionUrl": "http://10.0.0.5:5678/webhook-waiting/7", "finished": False},
            }
        },
        gets={
            "http://engine.test/webhook-waiting/7": [
                {"finished": False},
                {"finished": True, "data": {"messages": ["hi"]}},
            ],
            "http://engine.test/api/v1/executions/42": [{"id": "42", "finished": True}],
            "http://engine.test/healthz": [{"status": "ok"}],
        },
    )


def test_job_route_streams_full_event_sequence(engine):
    metrics = InMemoryMetrics()
    with build_client(engine, metrics) as client:
        resp = client.post("/api/generer/messages", json={"id": 5, "extra": True})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(resp.text)
    assert [name for name, _ in events] == [
        "start",
        "progress",
        "step",
        "update",
        "step",
        "update",
        "workflow_completed",
        "completed",
        "polling_ended",
    ]
    completed = dict(events)["completed"]
    assert completed["data"] == {"messages": ["hi"]}
    assert completed["message"] == "Messages generated"
    # every event carries the request id returned in the header
    request_id = resp.headers["X-Request-ID"]
    assert {data["requestId"] for _, data in events} == {request_id}
    assert engine.posted == [("http://engine.test/webhook/generer/messages", {"id": 5, "mode": "generate"})]
    snapshot = metrics.snapshot()
    assert snapshot["jobsByTerminalState"] == {"COMPLETED": 1}
    assert snapshot["activeConnections"] == 0


def test_inbound_request_id_is_reused(engine):
    with build_client(engine) as client:
        resp = client.post("/webhook/generer/messages", json={"id": 1}, headers={"X-Request-ID": "abc123"})

    assert resp.headers["X-Request-ID"] == "abc123"
    assert all(data["requestId"] == "abc123" for _, data in parse_sse(resp.text))


def test_job_by_name_streams(engine):
    with build_client(engine) as client:
        resp = client.post("/jobs/generate-messages", json={"id": 1})

    names = [name for name, _ in parse_sse(resp.text)]
    assert names[0] == "start"
    assert names[-1] == "polling_ended"


@pytest.mark.parametrize("path", ["/api/unknown/route", "/jobs/unknown"])
def test_unknown_job_type_is_404_problem(engine, path):
    with build_client(engine) as client:
        resp = client.post(path, json={})

    assert resp.status_code == 404
    problem = resp.json()
    assert problem["title"] == "Job Type Not Found"
    assert problem["status"] == 404


def test_trigger_failure_streams_error_event():
    engine = FakeEngineClient(
        posts={"http://engine.test/webhook/generer/messages": {"status": 500, "headers": {}, "body": {"message": "boom"}}},
        gets={},
    )
    with build_client(engine) as client:
        resp = client.post("/api/generer/messages", json={"id": 1})

    events = parse_sse(resp.text)
    assert [name for name, _ in events] == ["start", "error"]
    assert events[1][1]["status"] == 500


def test_execution_lookup_streams(engine):
    with build_client(engine) as client:
        resp = client.get("/api/execution/42")

    events = parse_sse(resp.text)
    assert [name for name, _ in events] == ["start", "progress", "completed"]
    assert events[-1][1]["data"] == {"id": "42", "finished": True}


def test_health_reports_engine_and_uptime(engine):
    with build_client(engine) as client:
        body = client.get("/health").json()

    assert body["status"] == "OK"
    assert body["engine"]["reachable"] is True
    assert body["uptime"] >= 0
    assert "metrics" in body


def test_webhook_listing(engine):
    with build_client(engine) as client:
        body = client.get("/api/webhooks").json()

    paths = {w["path"] for w in body["webhooks"]}
    assert {"/webhook/generer/messages", "/api/generer/messages", "/jobs/generate-messages"} <= paths
    assert body["total"] == len(body["webhooks"])


def test_debug_stats_and_log_level(engine):
    with build_client(engine) as client:
        stats = client.get("/debug/stats").json()
        assert stats["jobTypes"] == ["generate-messages"]
        assert stats["activeJobs"] == 0

        changed = client.post("/debug/log-level", json={"level": "debug"})
        assert changed.status_code == 200
        assert changed.json()["newLevel"] == "DEBUG"

        invalid = client.post("/debug/log-level", json={"level": "loud"})
        assert invalid.status_code == 400
        assert invalid.json()["title"] == "Invalid Log Level"


def test_cors_headers(engine):
    with build_client(engine) as client:
        resp = client.get("/health", headers={"Origin": "http://app.example"})

    assert resp.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_client_disconnect_cancels_running_job():
    engine = FakeEngineClient(
        posts={
            "http://engine.test/webhook/generer/messages": {
                "status": 200,
                "headers": {},
                "body": {"executionUrl": "http://engine.test/webhook-waiting/9", "finished": False},
            }
        },
        gets={"http://engine.test/webhook-waiting/9": [{"finished": False}]},
    )
    metrics = InMemoryMetrics()
    slow = PollingConfig(interval_tiers=((5, 30.0),), max_interval=30.0, error_interval=30.0)
    app = build_app(engine, metrics, polling=slow)

    request_sent = False
    gone = asyncio.Event()
    chunks: List[bytes] = []

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": b'{"id": 1}', "more_body": False}
        await gone.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body":
            chunks.append(message.get("body", b""))
            if b"event: update" in message.get("body", b""):
                gone.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/generer/messages",
        "raw_path": b"/api/generer/messages",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"relay.test"), (b"content-type", b"application/json")],
        "client": ("127.0.0.1", 50000),
        "server": ("relay.test", 80),
        "state": {},
    }

    async with app.router.lifespan_context(app):
        launcher: JobLauncher = app.state.job_launcher
        await asyncio.wait_for(app(scope, receive, send), timeout=5)
        for _ in range(300):
            if launcher.active_jobs == 0:
                break
            await asyncio.sleep(0.01)

        assert launcher.active_jobs == 0
        snapshot = metrics.snapshot()
        assert snapshot["jobsByTerminalState"] == {"INTERRUPTED": 1}
        assert snapshot["activeConnections"] == 0

    streamed = b"".join(chunks)
    assert b"event: update" in streamed
    assert b"event: polling_ended" not in streamed

import json

import pytest

from flowrelay.core.exceptions import ProtocolViolation
from flowrelay.core.models.events import EventType, StreamEvent
from flowrelay.core.models.job_types import JobTypeConfig, JobTypesConfig
from flowrelay.core.models.poll_state import PollPhase, PollResult, PollState
from flowrelay.core.models.status import ClassifiedError, ErrorKind, Severity, StatusDocument
from flowrelay.core.utils.locator import resolve_locator, resolve_trigger_url

CRITICAL = ClassifiedError(kind=ErrorKind.workflow_error, message="failed", severity=Severity.critical)


# ---------------- PollState -----------------

def test_sticky_error_is_set_once_and_never_cleared():
    state = PollState()
    assert state.record_workflow_error(CRITICAL) is True
    assert state.record_workflow_error(
        ClassifiedError(kind=ErrorKind.remote_timeout, severity=Severity.warning)
    ) is False
    state.record_success(StatusDocument(raw={"finished": False}))
    assert state.error_seen
    assert state.workflow_error == CRITICAL
    assert state.completion_phase() == PollPhase.completed_with_errors


def test_completion_phase_without_error():
    assert PollState().completion_phase() == PollPhase.completed


def test_failures_grow_and_reset():
    state = PollState()
    assert [state.record_failure() for _ in range(3)] == [1, 2, 3]
    state.record_success(StatusDocument())
    assert state.consecutive_failures == 0


def test_transitions_follow_lifecycle():
    state = PollState()
    with pytest.raises(RuntimeError):
        state.transition(PollPhase.completed)
    state.transition(PollPhase.polling)
    state.transition(PollPhase.network_failure)
    assert state.is_terminal
    with pytest.raises(RuntimeError):
        state.transition(PollPhase.completed)


def test_workflow_status_labels():
    state = PollState()
    assert state.workflow_status() == "running"
    state.record_success(StatusDocument(raw={"finished": True}))
    assert state.workflow_status() == "completed"
    state.record_workflow_error(CRITICAL)
    assert state.workflow_status() == "error-but-continuing"


def test_poll_result_meta_and_payload():
    document = StatusDocument(raw={"finished": True, "data": {"x": 1}})
    result = PollResult(
        document=document,
        terminal_state=PollPhase.completed_with_errors,
        total_attempts=4,
        total_elapsed_seconds=12.3456,
        error_seen=True,
    )
    payload = result.as_payload()
    assert payload["data"] == {"x": 1}
    assert payload["_meta"] == {
        "success": True,
        "failed": True,
        "terminalState": "COMPLETED_WITH_ERRORS",
        "totalAttempts": 4,
        "totalElapsedSeconds": 12.346,
    }
    assert "_meta" not in document.raw


# ---------------- StatusDocument -----------------

def test_status_document_fields():
    doc = StatusDocument.from_body({"finished": True, "executionUrl": " ", "data": [1]})
    assert doc.finished is True
    assert doc.execution_url is None
    assert doc.data == [1]
    assert StatusDocument(raw={"finished": "true"}).finished is False


def test_status_document_rejects_non_objects():
    with pytest.raises(ProtocolViolation) as excinfo:
        StatusDocument.from_body(["not", "an", "object"], url="http://engine.test/s")
    assert excinfo.value.code == "protocol_violation"
    assert excinfo.value.url == "http://engine.test/s"


# ---------------- StreamEvent -----------------

def test_stream_event_sse_frame():
    event = StreamEvent(event=EventType.error_detected, payload={"attempt": 2}, correlation_id="abc")
    frame = event.to_sse()
    assert frame.startswith("event: n8n_error_detected\ndata: ")
    assert frame.endswith("\n\n")
    data = json.loads(frame.split("data: ", 1)[1])
    assert data["attempt"] == 2
    assert data["requestId"] == "abc"
    assert "timestamp" in data


# ---------------- Job types -----------------

def test_job_type_routes_are_normalized():
    job_type = JobTypeConfig(name="x", **{"trigger-path": "webhook/x", "routes": ["api/x/", "/webhook/x"]})
    assert job_type.routes == ["/api/x", "/webhook/x"]


def test_build_payload_without_projection_forwards_body():
    job_type = JobTypeConfig(name="x", trigger_path="webhook/x")
    assert job_type.build_payload({"a": 1}) == {"a": 1}
    with_defaults = JobTypeConfig(name="x", trigger_path="webhook/x", defaults={"mode": "generate"})
    assert with_defaults.build_payload({"mode": "regenerate"}) == {"mode": "regenerate"}
    assert with_defaults.build_payload(None) == {"mode": "generate"}


def test_build_payload_with_projection():
    job_type = JobTypeConfig(
        name="x", trigger_path="webhook/x", payload_fields=["id", "mode"], defaults={"mode": "generate"}
    )
    assert job_type.build_payload({"id": 1, "other": 2}) == {"id": 1, "mode": "generate"}
    assert job_type.build_payload({}) == {"mode": "generate"}


def test_job_types_config_uses_yaml_aliases():
    config = JobTypesConfig(**{"job-types": [{"name": "x", "trigger-path": "webhook/x"}]})
    assert config.job_types[0].trigger_path == "webhook/x"


# ---------------- Locators -----------------

@pytest.mark.parametrize(
    "locator, rewrite, expected",
    [
        ("webhook-waiting/12", True, "https://engine.example/webhook-waiting/12"),
        ("/webhook-waiting/12", True, "https://engine.example/webhook-waiting/12"),
        ("http://10.0.0.5:5678/webhook-waiting/12?sig=a", True, "https://engine.example/webhook-waiting/12?sig=a"),
        ("http://10.0.0.5:5678/webhook-waiting/12", False, "http://10.0.0.5:5678/webhook-waiting/12"),
    ],
)
def test_resolve_locator(locator, rewrite, expected):
    assert resolve_locator("https://engine.example", locator, rewrite_host=rewrite) == expected


def test_resolve_trigger_url():
    assert resolve_trigger_url("https://engine.example/", "/webhook/a") == "https://engine.example/webhook/a"
    assert resolve_trigger_url("https://engine.example/", "https://other.example/hook") == "https://other.example/hook"

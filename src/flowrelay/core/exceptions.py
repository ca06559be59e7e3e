from typing import Any, Optional


class RelayError(Exception):
    """Base exception for relay failures.

    Attributes:
        message: Human-readable error description
        job_id: Optional job (request) identifier
    """
    def __init__(self, message: str, job_id: Optional[str] = None):
        self.message = message
        self.job_id = job_id
        super().__init__(message)


class TransportError(RelayError):
    """Network level failure on an outbound HTTP call.

    Recoverable while polling; the engine retries it up to the
    consecutive-failure ceiling.

    Attributes:
        url: Target URL of the failed request
        code: Short machine readable cause (e.g. "timeout", "connection")
    """
    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        code: Optional[str] = None,
        job_id: Optional[str] = None,
    ):
        self.url = url
        self.code = code
        super().__init__(message, job_id=job_id)


class ProtocolViolation(TransportError):
    """Remote answered, but not with something we can treat as a status document.

    Covers HTTP status >= 600 and bodies that are not a JSON object.
    Handled exactly like TransportError for retry purposes.
    """
    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        job_id: Optional[str] = None,
    ):
        self.status = status
        super().__init__(message, url=url, code="protocol_violation", job_id=job_id)


class TriggerError(RelayError):
    """Initial trigger POST failed. Fatal for the invocation, never retried.

    Attributes:
        url: Trigger URL
        status: Upstream HTTP status (if a response was received)
        body: Upstream response body (if available)
        code: Short cause code carried over from the transport failure
    """
    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        body: Any = None,
        code: Optional[str] = None,
        job_id: Optional[str] = None,
    ):
        self.url = url
        self.status = status
        self.body = body
        self.code = code
        super().__init__(message, job_id=job_id)


class WorkflowError(RelayError):
    """Remote workflow reported an internal failure.

    Only raised inside the engine when continue-on-error is disabled.
    """
    def __init__(self, classification: Any, job_id: Optional[str] = None):
        self.classification = classification
        super().__init__(getattr(classification, "message", None) or "Workflow error", job_id=job_id)


class SinkClosedError(RelayError):
    """The stream consumer is gone; no further events can be delivered."""
    pass


class JobTypeNotFound(RelayError):
    """No job type configured for the requested name or route."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No job type configured for '{key}'")

from typing import Any, Dict, Protocol


class MetricsPort(Protocol):
    """Observability counters shared by concurrent jobs.

    Implementations must be safe to call from multiple tasks and threads.
    """

    def request_started(self, endpoint: str) -> None:  # pragma: no cover - protocol
        ...

    def request_finished(self, endpoint: str) -> None:  # pragma: no cover - protocol
        ...

    def record_error(self, kind: str) -> None:  # pragma: no cover - protocol
        ...

    def job_finished(self, job_type: str, terminal_state: str) -> None:  # pragma: no cover - protocol
        ...

    def snapshot(self) -> Dict[str, Any]:  # pragma: no cover - protocol
        ...

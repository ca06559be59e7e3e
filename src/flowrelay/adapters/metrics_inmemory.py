import threading
import time
from collections import Counter
from typing import Any, Dict

from flowrelay.core.interfaces.metrics import MetricsPort


class InMemoryMetrics(MetricsPort):
    """Process-local counters behind a lock.

    Jobs run as asyncio tasks, but the watchdog reload thread and test
    threads may read concurrently, so every access takes the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._total_requests = 0
        self._active_connections = 0
        self._total_errors = 0
        self._by_endpoint: Counter[str] = Counter()
        self._errors_by_kind: Counter[str] = Counter()
        self._jobs_by_state: Counter[str] = Counter()
        self._jobs_by_type: Counter[str] = Counter()

    def request_started(self, endpoint: str) -> None:
        with self._lock:
            self._total_requests += 1
            self._active_connections += 1
            self._by_endpoint[endpoint] += 1

    def request_finished(self, endpoint: str) -> None:
        with self._lock:
            self._active_connections = max(0, self._active_connections - 1)

    def record_error(self, kind: str) -> None:
        with self._lock:
            self._total_errors += 1
            self._errors_by_kind[kind] += 1

    def job_finished(self, job_type: str, terminal_state: str) -> None:
        with self._lock:
            self._jobs_by_state[terminal_state] += 1
            self._jobs_by_type[job_type] += 1

    def uptime_seconds(self) -> float:
        return time.time() - self._started_at

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "uptimeSeconds": round(self.uptime_seconds(), 1),
                "totalRequests": self._total_requests,
                "activeConnections": self._active_connections,
                "totalErrors": self._total_errors,
                "requestsByEndpoint": dict(self._by_endpoint),
                "errorsByKind": dict(self._errors_by_kind),
                "jobsByTerminalState": dict(self._jobs_by_state),
                "jobsByType": dict(self._jobs_by_type),
            }

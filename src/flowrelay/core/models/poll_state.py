import time
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from flowrelay.core.models.status import ClassifiedError, StatusDocument


class PollPhase(StrEnum):
    init = "INIT"
    polling = "POLLING"
    completed = "COMPLETED"
    completed_with_errors = "COMPLETED_WITH_ERRORS"
    max_attempts = "MAX_ATTEMPTS"
    network_failure = "NETWORK_FAILURE"
    interrupted = "INTERRUPTED"
    # opt-in: only reachable with continue_on_workflow_error=False / a hard ceiling
    workflow_failed = "WORKFLOW_FAILED"
    timed_out = "TIMED_OUT"


TERMINAL_PHASES = frozenset(p for p in PollPhase if p not in (PollPhase.init, PollPhase.polling))
SUCCESS_PHASES = frozenset({PollPhase.completed, PollPhase.completed_with_errors})


class PollState(BaseModel):
    """Per-job polling record, owned by exactly one engine run.

    `workflow_error` is sticky: `record_workflow_error` sets it once and nothing
    clears it, so the COMPLETED vs COMPLETED_WITH_ERRORS decision is a pure
    function of this field (`completion_phase`).
    """

    phase: PollPhase = PollPhase.init
    attempts: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    workflow_error: Optional[ClassifiedError] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = Field(default_factory=time.monotonic)
    document: Optional[StatusDocument] = None

    def transition(self, target: PollPhase) -> None:
        if self.phase == PollPhase.init and target == PollPhase.polling:
            self.phase = target
            return
        if self.phase == PollPhase.polling and target in TERMINAL_PHASES:
            self.phase = target
            return
        raise RuntimeError(f"Invalid poll state transition {self.phase} -> {target}")

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def error_seen(self) -> bool:
        return self.workflow_error is not None

    def record_workflow_error(self, classification: ClassifiedError) -> bool:
        """Set the sticky error field. Returns True only the first time."""
        if self.workflow_error is not None:
            return False
        self.workflow_error = classification
        return True

    def record_success(self, document: StatusDocument) -> None:
        self.consecutive_failures = 0
        self.document = document

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def completion_phase(self) -> PollPhase:
        return PollPhase.completed_with_errors if self.error_seen else PollPhase.completed

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_monotonic

    def workflow_status(self) -> str:
        if self.error_seen:
            return "error-but-continuing"
        if self.document is not None and self.document.finished:
            return "completed"
        return "running"


class PollResult(BaseModel):
    """Outcome handed back to the launcher once the engine stops."""

    document: StatusDocument
    terminal_state: PollPhase
    total_attempts: int
    total_elapsed_seconds: float
    error_seen: bool
    consecutive_failures: int = 0

    @property
    def success(self) -> bool:
        return self.terminal_state in SUCCESS_PHASES

    def meta(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.error_seen,
            "terminalState": str(self.terminal_state),
            "totalAttempts": self.total_attempts,
            "totalElapsedSeconds": round(self.total_elapsed_seconds, 3),
        }

    def as_payload(self) -> Dict[str, Any]:
        return self.document.with_meta(self.meta())

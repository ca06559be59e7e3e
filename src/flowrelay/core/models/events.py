import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(StrEnum):
    start = "start"
    progress = "progress"
    step = "step"
    update = "update"
    error_detected = "n8n_error_detected"  # wire name kept for existing clients
    error_persisting = "error_persisting"
    polling_error = "polling_error"
    too_many_errors = "too_many_errors"
    workflow_completed = "workflow_completed"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    interrupted = "interrupted"
    error = "error"
    polling_ended = "polling_ended"


class StreamEvent(BaseModel):
    """One server -> client event. Immutable once emitted."""

    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = "-"

    model_config = {"frozen": True}

    def as_data(self) -> Dict[str, Any]:
        return {
            **self.payload,
            "timestamp": self.timestamp.isoformat(),
            "requestId": self.correlation_id,
        }

    def to_sse(self) -> str:
        data = json.dumps(self.as_data(), ensure_ascii=False, default=str)
        return f"event: {self.event}\ndata: {data}\n\n"

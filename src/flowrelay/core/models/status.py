from enum import StrEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from flowrelay.core.exceptions import ProtocolViolation


class StatusDocument(BaseModel):
    """Decoded status body returned by the remote workflow engine.

    Notes:
    - `raw` is kept exactly as received; events re-serialize it verbatim and
      a new fetch replaces the whole document (no merging with older versions).
    - Only `finished`, `executionUrl` and `data` are read by the core, and all
      three are optional in the remote payload.
    """

    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any, url: Optional[str] = None) -> "StatusDocument":
        if not isinstance(body, dict):
            raise ProtocolViolation(
                f"Expected a JSON object as status document, got {type(body).__name__}",
                url=url,
            )
        return cls(raw=body)

    @property
    def finished(self) -> bool:
        return self.raw.get("finished") is True

    @property
    def execution_url(self) -> Optional[str]:
        value = self.raw.get("executionUrl")
        if isinstance(value, str) and value.strip():
            return value
        return None

    @property
    def data(self) -> Any:
        return self.raw.get("data")

    def with_meta(self, meta: Dict[str, Any]) -> Dict[str, Any]:
        """Return the raw document plus a `_meta` block (raw mapping untouched)."""
        return {**self.raw, "_meta": meta}


class ErrorKind(StrEnum):
    none = "none"
    workflow_error = "workflow_error"
    process_error = "process_error"
    remote_timeout = "remote_timeout"


class Severity(StrEnum):
    critical = "critical"
    warning = "warning"


class ClassifiedError(BaseModel):
    kind: ErrorKind = ErrorKind.none
    message: Optional[str] = None
    severity: Optional[Severity] = None

    model_config = {"frozen": True}

    @property
    def is_error(self) -> bool:
        return self.kind != ErrorKind.none


NO_ERROR = ClassifiedError()

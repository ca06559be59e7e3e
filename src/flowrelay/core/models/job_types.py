from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


class JobTypeConfig(BaseModel):
    """Configuration for one kind of remote job.

    Replaces a hand-written route handler: the trigger path and the payload
    shape are data, the control flow is the shared JobLauncher.
    """

    name: str = Field(description="Unique job type name (e.g. 'generate-messages')")
    description: str | None = None
    trigger_path: str = Field(
        alias="trigger-path",
        description=(
            "Webhook path of the workflow trigger, relative to the engine "
            "base URL. An absolute http(s) URL is used as is."
        ),
    )
    routes: list[str] = Field(
        default_factory=list,
        description="Inbound POST paths that start this job type (e.g. /api/generer/messages).",
    )
    payload_fields: list[str] | None = Field(
        default=None,
        alias="payload-fields",
        description=(
            "If set, only these keys of the request body are forwarded. "
            "If unset, the request body is forwarded unmodified."
        ),
    )
    defaults: Dict[str, Any] = Field(
        default_factory=dict,
        description="Values used for projected payload fields missing from the request.",
    )
    start_message: str = Field(default="Job started", alias="start-message")
    completed_message: str = Field(default="Job completed", alias="completed-message")

    model_config = {"populate_by_name": True}

    @field_validator("routes", mode="before")
    def ensure_leading_slash(cls, value: Any) -> Any:
        """Normalize routes to '/path' without trailing slash."""
        if not isinstance(value, list):
            return value
        normalized = []
        for route in value:
            route = "/" + str(route).strip().strip("/")
            normalized.append(route)
        return normalized

    def build_payload(self, body: Dict[str, Any] | None) -> Dict[str, Any]:
        body = body or {}
        if self.payload_fields is None:
            return {**self.defaults, **body} if self.defaults else body
        payload: Dict[str, Any] = {}
        for field in self.payload_fields:
            if field in body:
                payload[field] = body[field]
            elif field in self.defaults:
                payload[field] = self.defaults[field]
        return payload


class JobTypesConfig(BaseModel):
    """Root configuration containing all job types"""

    job_types: list[JobTypeConfig] = Field(
        alias="job-types",
        description="List of job type configurations",
    )

    model_config = {"populate_by_name": True}

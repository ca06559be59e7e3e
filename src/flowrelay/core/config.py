"""Configuration models for core domain components.

Pydantic-based configuration classes that consolidate the settings of the
polling engine and the job launcher, enabling dependency injection and
testability (tests pass tiny intervals instead of patching sleeps).
"""

from typing import Optional
from pydantic import BaseModel, Field, HttpUrl, field_validator


class PollingConfig(BaseModel):
    """Configuration for PollingEngine behavior.

    Attributes:
        interval_tiers: (attempt_below, seconds) pairs, checked in order
        max_interval: Interval once every tier threshold is passed
        error_interval: Fixed interval after an error (transport or workflow)
        max_attempts: Attempt ceiling (every cycle counts as an attempt)
        max_consecutive_failures: Back-to-back transport failures before giving up
        continue_on_workflow_error: Keep polling after the remote reports an error
        hard_timeout: Optional ceiling on total polling time (None = disabled)
    """

    interval_tiers: tuple[tuple[int, float], ...] = Field(
        default=((5, 3.0), (20, 5.0), (60, 10.0), (120, 15.0)),
        description="Graduated poll intervals as (attempt upper bound, seconds)",
    )

    max_interval: float = Field(
        default=20.0,
        gt=0,
        description="Poll interval in seconds beyond the last tier",
    )

    error_interval: float = Field(
        default=15.0,
        gt=0,
        description="Poll interval in seconds after an error",
    )

    max_attempts: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of poll cycles per job",
    )

    max_consecutive_failures: int = Field(
        default=10,
        ge=1,
        description="Consecutive transport failures tolerated before giving up",
    )

    continue_on_workflow_error: bool = Field(
        default=True,
        description="Keep polling when the remote workflow reports an error",
    )

    hard_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Maximum total polling time in seconds (None for no limit)",
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @field_validator("interval_tiers")
    def tiers_non_decreasing(cls, value):
        """Thresholds and intervals must both be non-decreasing."""
        previous_bound, previous_seconds = -1, 0.0
        for bound, seconds in value:
            if bound < previous_bound or seconds < previous_seconds or seconds <= 0:
                raise ValueError("interval_tiers must be non-decreasing with positive intervals")
            previous_bound, previous_seconds = bound, seconds
        return value

    @classmethod
    def from_app_settings(cls, settings) -> "PollingConfig":
        return cls(
            error_interval=settings.RELAY_POLL_ERROR_INTERVAL,
            max_attempts=settings.RELAY_POLL_MAX_ATTEMPTS,
            max_consecutive_failures=settings.RELAY_POLL_MAX_CONSECUTIVE_ERRORS,
            continue_on_workflow_error=settings.RELAY_CONTINUE_ON_WORKFLOW_ERROR,
            hard_timeout=settings.RELAY_POLL_HARD_TIMEOUT,
        )


class LauncherConfig(BaseModel):
    """Configuration for JobLauncher: where the remote engine lives.

    Attributes:
        engine_base_url: Base URL of the workflow engine webhooks
        rewrite_status_host: Rebase absolute status locators onto engine_base_url
        executions_path: Engine API path for execution lookups
        health_path: Engine path probed by the health check
        lookup_timeout: Timeout for one-shot execution lookups
        lookup_attempts: Retry attempts for execution lookups
        probe_timeout: Timeout for the single health probe request
    """

    engine_base_url: HttpUrl
    rewrite_status_host: bool = True
    executions_path: str = "api/v1/executions"
    health_path: str = "healthz"
    lookup_timeout: float = Field(default=15.0, gt=0)
    lookup_attempts: int = Field(default=3, ge=1, le=10)
    probe_timeout: float = Field(default=10.0, gt=0)

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "LauncherConfig":
        return cls(
            engine_base_url=settings.RELAY_ENGINE_BASE_URL,
            rewrite_status_host=settings.RELAY_REWRITE_STATUS_HOST,
            executions_path=settings.RELAY_ENGINE_EXECUTIONS_PATH,
            health_path=settings.RELAY_ENGINE_HEALTH_PATH,
            lookup_timeout=settings.RELAY_LOOKUP_TIMEOUT,
            probe_timeout=settings.RELAY_PROBE_TIMEOUT,
        )

    @property
    def base_url(self) -> str:
        return str(self.engine_base_url).rstrip("/") + "/"

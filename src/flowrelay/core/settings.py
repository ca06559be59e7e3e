from pathlib import Path

from pydantic import HttpUrl, field_validator
from pydantic_settings import BaseSettings
from rich import print

from flowrelay.adapters.logging_adapter import LoggingAdapter
from flowrelay.core.interfaces.logging import LoggingPort


# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class RelaySettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }
    RELAY_LOG_LEVEL: str = "INFO"
    RELAY_SERVER_HOST: str = "0.0.0.0"
    RELAY_SERVER_PORT: int = 3000
    RELAY_CORS_ORIGINS: list[str] = ["*"]
    # Remote workflow engine (webhook host). Status locators are rebased onto it.
    RELAY_ENGINE_BASE_URL: HttpUrl = HttpUrl("http://localhost:5678/")
    RELAY_ENGINE_HEALTH_PATH: str = "healthz"
    RELAY_ENGINE_EXECUTIONS_PATH: str = "api/v1/executions"
    RELAY_REWRITE_STATUS_HOST: bool = True
    RELAY_JOB_TYPES_FILE: Path = Path("job_types.yaml")
    # Polling policy
    RELAY_POLL_MAX_ATTEMPTS: int = 1000
    RELAY_POLL_MAX_CONSECUTIVE_ERRORS: int = 10
    RELAY_POLL_ERROR_INTERVAL: float = 15.0
    # Optional hard ceiling on total polling time in seconds (unset = disabled)
    RELAY_POLL_HARD_TIMEOUT: float | None = None
    RELAY_CONTINUE_ON_WORKFLOW_ERROR: bool = True
    # Timeout for execution lookups (retried)
    RELAY_LOOKUP_TIMEOUT: float = 15.0
    # Timeout for the engine health probe (single attempt)
    RELAY_PROBE_TIMEOUT: float = 10.0

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("Relay Settings:")
        print(self)

    @field_validator("RELAY_ENGINE_BASE_URL", mode="before")
    def ensure_trailing_slash(cls, value):
        """Ensure RELAY_ENGINE_BASE_URL has a trailing slash."""
        value = str(value)
        if not value.endswith("/"):
            value += "/"
        return value


class _LoggerProxy(LoggingPort):
    """Module-level `logger` that forwards to the currently injected adapter.

    Modules bind `logger` at import time, so injection swaps the target
    instead of rebinding the name.
    """

    def __init__(self, target: LoggingPort):
        self._target = target

    def set_target(self, target: LoggingPort) -> None:
        self._target = target

    def info(self, msg: str, *args):
        self._target.info(msg, *args)

    def warning(self, msg: str, *args):
        self._target.warning(msg, *args)

    def error(self, msg: str, *args):
        self._target.error(msg, *args)

    def debug(self, msg: str, *args):
        self._target.debug(msg, *args)


app_settings = RelaySettings()

logger = _LoggerProxy(LoggingAdapter("flowrelay", app_settings.RELAY_LOG_LEVEL))


def set_logger(new_logger: LoggingPort) -> None:
    logger.set_target(new_logger)

# main.py
import os

import uvicorn

from flowrelay.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from flowrelay.adapters.job_types_file_adapter import JobTypesFileAdapter
from flowrelay.adapters.logging_adapter import LoggingAdapter
from flowrelay.adapters.metrics_inmemory import InMemoryMetrics
from flowrelay.adapters.retry_tenacity import TenacityRetryAdapter
from flowrelay.adapters.web.fastapi import create_app
from flowrelay.core.config import LauncherConfig, PollingConfig
from flowrelay.core.logging_config import configure_logging
from flowrelay.core.managers.job_launcher import JobLauncher
from flowrelay.core.settings import app_settings, logger, set_logger


# main lives at the outermost layer (not in core)
# Instantiates all the concrete adapters
# Wires dependencies together
# Starts the application

def main():
    # Central logging configuration BEFORE injecting adapter so uvicorn adopts level/format
    configure_logging(app_settings.RELAY_LOG_LEVEL)
    set_logger(LoggingAdapter("flowrelay", app_settings.RELAY_LOG_LEVEL))
    app_settings.print_settings(logger)

    config_path = os.path.abspath(str(app_settings.RELAY_JOB_TYPES_FILE))

    # Instantiate infrastructure adapters
    job_types_port = JobTypesFileAdapter(config_path)
    job_types_port.start_file_watcher()
    http_client = AioHttpClientAdapter()
    metrics = InMemoryMetrics()

    launcher_config = LauncherConfig.from_app_settings(app_settings)
    polling_config = PollingConfig.from_app_settings(app_settings)

    def job_launcher_factory(client):
        retry_adapter = TenacityRetryAdapter(
            attempts=launcher_config.lookup_attempts, wait_initial=0.5, wait_max=4.0
        )
        return JobLauncher(
            job_types=job_types_port,
            http_client=client,
            config=launcher_config,
            polling_config=polling_config,
            retry_port=retry_adapter,
            metrics=metrics,
        )

    app = create_app(
        job_launcher_factory=job_launcher_factory,
        http_client=http_client,
        metrics=metrics,
    )

    # Let uvicorn inherit existing logging (separate sinks & correlation ids)
    try:
        uvicorn.run(
            app,
            host=app_settings.RELAY_SERVER_HOST,
            port=app_settings.RELAY_SERVER_PORT,
            log_config=None,
            log_level=str(app_settings.RELAY_LOG_LEVEL).lower(),
        )
    finally:
        job_types_port.stop_file_watcher()


if __name__ == "__main__":
    main()

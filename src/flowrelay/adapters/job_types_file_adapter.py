import os
import threading
from threading import Timer
from typing import List, Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

from flowrelay.core.interfaces.job_types import JobTypesPort
from flowrelay.core.models.job_types import JobTypeConfig, JobTypesConfig
from flowrelay.core.settings import logger


class _JobTypesFileHandler(FileSystemEventHandler):
    DEBOUNCE_DELAY = 0.5  # 500ms

    def __init__(self, adapter: JobTypesPort, config_path: str, config_filename: str):
        self.adapter = adapter
        self.config_path = os.path.abspath(config_path)
        self.config_filename = config_filename
        self._reload_timer: Optional[Timer] = None

    def on_any_event(self, event):
        if event.is_directory:
            return
        src_path = str(event.src_path)
        # configmap mounts swap a "..data" symlink instead of touching the file
        if (
            src_path == self.config_path
            or src_path.endswith(self.config_filename)
            or "..data" in src_path
        ):
            logger.debug("File event: %s on %s", event.event_type, src_path)
            self._debounced_reload()

    def _debounced_reload(self):
        if self._reload_timer:
            self._reload_timer.cancel()
        self._reload_timer = Timer(self.DEBOUNCE_DELAY, self.adapter.load_job_types)
        self._reload_timer.daemon = True
        self._reload_timer.start()


class JobTypesFileAdapter(JobTypesPort):
    """Job types read from a YAML file and hot-reloaded on change.

    A broken file never replaces a working configuration: parse and
    validation errors are logged and the previous job types stay active.
    """

    def __init__(self, config_path: str):
        self._config_path = os.path.abspath(str(config_path))
        self._lock = threading.Lock()
        self._config: JobTypesConfig = JobTypesConfig(job_types=[])
        self._observer = None

        self.load_job_types()

    def start_file_watcher(self):
        observer = PollingObserver()
        config_dir = os.path.dirname(self._config_path)
        config_filename = os.path.basename(self._config_path)

        handler = _JobTypesFileHandler(self, self._config_path, config_filename)

        observer.schedule(handler, path=config_dir, recursive=False)
        observer.start()

        self._observer = observer

    def stop_file_watcher(self):
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def _check_unique(self, config: JobTypesConfig) -> None:
        names, routes = set(), {}
        for job_type in config.job_types:
            if job_type.name in names:
                raise ValueError(f"Duplicate job type name '{job_type.name}'")
            names.add(job_type.name)
            for route in job_type.routes:
                if route in routes:
                    raise ValueError(
                        f"Route '{route}' is claimed by both '{routes[route]}' and '{job_type.name}'"
                    )
                routes[route] = job_type.name

    def load_job_types(self) -> None:
        logger.info("(Re)Loading job types from %s", self._config_path)

        try:
            with open(self._config_path, encoding="UTF-8") as file:
                content = yaml.safe_load(file)
            if not content:
                logger.warning("Job types file is empty: %s", self._config_path)
                return
            validated = JobTypesConfig(**content)
            self._check_unique(validated)
            with self._lock:
                self._config = validated
            logger.info(
                "Job types (re)loaded successfully: %s",
                ", ".join(job_type.name for job_type in validated.job_types),
            )
        except FileNotFoundError:
            logger.error("Job types file not found: %s", self._config_path)
        except yaml.YAMLError as e:
            logger.error("Failed to parse job types file: %s", e)
        except ValidationError as e:
            logger.error("Validation error in job types file: %s", e)
        except ValueError as e:
            logger.error("Invalid job types file: %s", e)

    def get_job_types(self) -> List[JobTypeConfig]:
        with self._lock:
            return list(self._config.job_types)

    def get_job_type(self, name: str) -> Optional[JobTypeConfig]:
        with self._lock:
            for job_type in self._config.job_types:
                if job_type.name == name:
                    return job_type
            return None

    def find_by_route(self, route: str) -> Optional[JobTypeConfig]:
        route = "/" + route.strip().strip("/")
        with self._lock:
            for job_type in self._config.job_types:
                if route in job_type.routes:
                    return job_type
            return None

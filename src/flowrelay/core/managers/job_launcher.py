import asyncio
import time
from typing import Any, Dict, Optional, Set

from flowrelay.core.config import LauncherConfig, PollingConfig
from flowrelay.core.exceptions import (
    JobTypeNotFound,
    ProtocolViolation,
    SinkClosedError,
    TransportError,
    TriggerError,
)
from flowrelay.core.interfaces.event_sink import EventSinkPort
from flowrelay.core.interfaces.http_client import HttpClientPort
from flowrelay.core.interfaces.job_types import JobTypesPort
from flowrelay.core.interfaces.metrics import MetricsPort
from flowrelay.core.interfaces.retry import RetryPort
from flowrelay.core.managers.classifier import classify
from flowrelay.core.managers.polling_engine import PollingEngine
from flowrelay.core.models.events import EventType
from flowrelay.core.models.job_types import JobTypeConfig
from flowrelay.core.models.poll_state import PollPhase, PollResult
from flowrelay.core.models.status import StatusDocument
from flowrelay.core.settings import logger
from flowrelay.core.utils.locator import resolve_locator, resolve_trigger_url

# terminal labels for runs that never reached the polling engine
TRIGGER_FAILED = "TRIGGER_FAILED"
LOOKUP_FAILED = "LOOKUP_FAILED"


class JobLauncher:
    """Starts remote jobs and streams their progress to an event sink.

    One launcher serves all job types; the per-type differences (trigger
    path, payload shape, messages) come from JobTypeConfig.

    Attributes:
        config: Where the remote engine lives and how one-shot reads behave
        polling_config: Handed to every PollingEngine this launcher creates
    """

    def __init__(
        self,
        job_types: JobTypesPort,
        http_client: HttpClientPort,
        config: LauncherConfig,
        polling_config: PollingConfig,
        retry_port: Optional[RetryPort] = None,
        metrics: Optional[MetricsPort] = None,
    ) -> None:
        self._job_types = job_types
        self._http = http_client
        self.config = config
        self.polling_config = polling_config
        self._retry = retry_port
        self._metrics = metrics
        self._tasks: Set[asyncio.Task] = set()
        self._shutdown = False

    # ---------------- Job type resolution -----------------
    def get_job_type(self, name: str) -> JobTypeConfig:
        job_type = self._job_types.get_job_type(name)
        if job_type is None:
            raise JobTypeNotFound(name)
        return job_type

    def job_type_for_route(self, route: str) -> JobTypeConfig:
        job_type = self._job_types.find_by_route(route)
        if job_type is None:
            raise JobTypeNotFound(route)
        return job_type

    def list_job_types(self) -> list[JobTypeConfig]:
        return self._job_types.get_job_types()

    def resolve_status_url(self, locator: str) -> str:
        return resolve_locator(
            self.config.base_url, locator, rewrite_host=self.config.rewrite_status_host
        )

    # ---------------- Task management -----------------
    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def start(
        self, job_type: JobTypeConfig, body: Dict[str, Any] | None, sink: EventSinkPort
    ) -> asyncio.Task:
        """Run `launch` in its own task; the caller consumes the sink."""
        return self._track(self.launch(job_type, body, sink), sink)

    def start_lookup(self, execution_id: str, sink: EventSinkPort) -> asyncio.Task:
        return self._track(self.lookup_execution(execution_id, sink), sink)

    def _track(self, coro, sink: EventSinkPort) -> asyncio.Task:
        if self._shutdown:
            coro.close()
            raise RuntimeError("JobLauncher is shutting down")
        task = asyncio.create_task(coro, name=f"job-{sink.correlation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"[job:task] started job_id={sink.correlation_id} active={len(self._tasks)}")
        return task

    async def shutdown(self) -> None:
        self._shutdown = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ---------------- Launch -----------------
    async def launch(
        self, job_type: JobTypeConfig, body: Dict[str, Any] | None, sink: EventSinkPort
    ) -> Optional[PollResult]:
        """Trigger one job and stream it to `sink` until a terminal event.

        Returns the polling outcome, or None when the job finished without
        polling or the trigger failed.
        """
        job_id = sink.correlation_id
        terminal = TRIGGER_FAILED
        result: Optional[PollResult] = None
        try:
            payload = job_type.build_payload(body)
            await sink.emit(
                str(EventType.start),
                {"message": job_type.start_message, "jobType": job_type.name},
            )

            try:
                document, duration = await self._trigger(job_type, payload, job_id)
            except TriggerError as exc:
                await self._emit_trigger_error(sink, job_type, exc)
                return None

            await sink.emit(
                str(EventType.progress),
                {
                    "message": "Initial response received from workflow engine",
                    "data": document.raw,
                    "requestDurationMs": duration,
                },
            )

            locator = document.execution_url
            if locator and not document.finished:
                logger.info(
                    f"[job:launch] handing off to polling job_id={job_id} type={job_type.name} locator={locator}"
                )
                engine = PollingEngine(
                    self._http,
                    sink,
                    self.polling_config,
                    resolve_locator=self.resolve_status_url,
                    metrics=self._metrics,
                    request_headers=self._request_headers(job_id),
                )

                async def summarize(poll_result: PollResult) -> None:
                    await self._emit_summary(sink, job_type, poll_result)

                result = await engine.run(locator, on_finished=summarize)
                terminal = str(result.terminal_state)
                return result

            # synchronous workflow: the trigger response is the final document
            error_seen = classify(document).is_error
            result = PollResult(
                document=document,
                terminal_state=(
                    PollPhase.completed_with_errors if error_seen else PollPhase.completed
                ),
                total_attempts=0,
                total_elapsed_seconds=duration / 1000,
                error_seen=error_seen,
            )
            terminal = str(result.terminal_state)
            await self._emit_summary(sink, job_type, result)
            return result
        except SinkClosedError:
            logger.info(f"[job:launch] consumer gone job_id={job_id} type={job_type.name}")
            terminal = str(PollPhase.interrupted)
            return result
        except asyncio.CancelledError:
            terminal = str(PollPhase.interrupted)
            raise
        finally:
            if self._metrics is not None:
                self._metrics.job_finished(job_type.name, terminal)
            sink.finish()

    async def _trigger(
        self, job_type: JobTypeConfig, payload: Dict[str, Any], job_id: str
    ) -> tuple[StatusDocument, int]:
        url = resolve_trigger_url(self.config.base_url, job_type.trigger_path)
        logger.debug(f"[job:trigger] POST url={url} job_id={job_id} keys={list(payload.keys())}")
        started = time.monotonic()
        try:
            resp = await self._http.post(url, json=payload, headers=self._request_headers(job_id))
        except TransportError as exc:
            raise TriggerError(
                f"Trigger request failed: {exc.message}", url=url, code=exc.code, job_id=job_id
            ) from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        status = resp.get("status") or 0
        body = resp.get("body")
        logger.info(
            f"[job:trigger] response job_id={job_id} type={job_type.name} status={status} duration_ms={duration_ms}"
        )
        if status >= 400:
            raise TriggerError(
                f"Workflow engine rejected the trigger (HTTP {status})",
                url=url,
                status=status,
                body=body,
                code="http_error",
                job_id=job_id,
            )

        if isinstance(body, dict):
            return StatusDocument(raw=body), duration_ms
        # plain-text or empty webhook answers carry no locator; keep them as data
        return StatusDocument(raw={"data": body}), duration_ms

    def _request_headers(self, job_id: str) -> Dict[str, str]:
        return {"User-Agent": f"flowrelay/{job_id}"}

    # ---------------- Terminal events -----------------
    async def _emit_summary(
        self, sink: EventSinkPort, job_type: JobTypeConfig, result: PollResult
    ) -> None:
        payload = result.as_payload()
        common = {
            "result": payload,
            "data": result.document.data,
            "totalAttempts": result.total_attempts,
            "totalElapsedSeconds": round(result.total_elapsed_seconds, 1),
        }
        if result.success and not result.error_seen:
            event, message = EventType.completed, job_type.completed_message
            extra = {"success": True}
        elif result.success:
            event = EventType.completed_with_errors
            message = f"{job_type.completed_message} (errors were detected)"
            extra = {"success": True, "hadErrors": True}
        else:
            event = EventType.interrupted
            message = f"Job '{job_type.name}' was interrupted"
            extra = {"success": False, "reason": str(result.terminal_state)}

        logger.info(
            f"[job:summary] job_id={sink.correlation_id} type={job_type.name} event={event} "
            f"state={result.terminal_state}"
        )
        await sink.emit(str(event), {"message": message, **extra, **common})

    async def _emit_trigger_error(
        self, sink: EventSinkPort, job_type: JobTypeConfig, exc: TriggerError
    ) -> None:
        logger.error(
            f"[job:trigger] failed job_id={sink.correlation_id} type={job_type.name} "
            f"status={exc.status} code={exc.code} error={exc.message}"
        )
        if self._metrics is not None:
            self._metrics.record_error("trigger")
        await sink.emit(
            str(EventType.error),
            {
                "success": False,
                "message": f"Could not start job '{job_type.name}'",
                "error": exc.message,
                "errorCode": exc.code,
                "status": exc.status,
                "body": exc.body,
            },
        )

    # ---------------- One-shot reads -----------------
    async def _get_with_retry(self, url: str, job_id: str | None = None) -> Dict[str, Any]:
        async def fetch():
            return await self._http.get(
                url, timeout=self.config.lookup_timeout, headers=self._request_headers(job_id or "-")
            )

        if self._retry:
            return await self._retry.execute(
                fetch, attempts=self.config.lookup_attempts, exception_types=(TransportError,)
            )
        return await fetch()

    async def lookup_execution(self, execution_id: str, sink: EventSinkPort) -> Optional[Dict[str, Any]]:
        """Stream a single read of an execution record from the engine API."""
        job_id = sink.correlation_id
        url = resolve_trigger_url(
            self.config.base_url, f"{self.config.executions_path.strip('/')}/{execution_id}"
        )
        terminal = LOOKUP_FAILED
        try:
            await sink.emit(
                str(EventType.start), {"message": f"Looking up execution {execution_id}"}
            )
            await sink.emit(
                str(EventType.progress), {"message": "Fetching execution details", "executionUrl": url}
            )
            started = time.monotonic()
            try:
                resp = await self._get_with_retry(url, job_id)
            except TransportError as exc:
                logger.error(
                    f"[job:lookup] failed execution_id={execution_id} job_id={job_id} "
                    f"code={exc.code} error={exc.message}"
                )
                if self._metrics is not None:
                    self._metrics.record_error("lookup")
                await sink.emit(
                    str(EventType.error),
                    {
                        "success": False,
                        "message": f"Could not fetch execution {execution_id}",
                        "error": exc.message,
                        "errorCode": exc.code,
                    },
                )
                return None

            duration_ms = int((time.monotonic() - started) * 1000)
            status = resp.get("status") or 0
            body = resp.get("body")
            if status >= 400:
                logger.warning(
                    f"[job:lookup] engine answered {status} execution_id={execution_id} job_id={job_id}"
                )
                await sink.emit(
                    str(EventType.error),
                    {
                        "success": False,
                        "message": f"Workflow engine answered HTTP {status} for execution {execution_id}",
                        "status": status,
                        "body": body,
                    },
                )
                return None

            logger.info(
                f"[job:lookup] execution_id={execution_id} job_id={job_id} "
                f"finished={isinstance(body, dict) and body.get('finished') is True} duration_ms={duration_ms}"
            )
            terminal = str(PollPhase.completed)
            await sink.emit(
                str(EventType.completed),
                {
                    "success": True,
                    "message": f"Execution {execution_id} retrieved",
                    "data": body,
                    "requestDurationMs": duration_ms,
                },
            )
            return body
        except SinkClosedError:
            terminal = str(PollPhase.interrupted)
            logger.info(f"[job:lookup] consumer gone job_id={job_id}")
            return None
        finally:
            if self._metrics is not None:
                self._metrics.job_finished("execution-lookup", terminal)
            sink.finish()

    async def probe_engine(self) -> Dict[str, Any]:
        """Check that the workflow engine answers on its health path. Never raises.

        One request, no retry: the health route must answer quickly even when
        the engine is down.
        """
        url = resolve_trigger_url(self.config.base_url, self.config.health_path)
        started = time.monotonic()
        try:
            resp = await self._http.get(
                url, timeout=self.config.probe_timeout, headers=self._request_headers("-")
            )
        except ProtocolViolation as exc:
            # answered, just not with JSON
            return {"reachable": True, "url": url, "status": exc.status, "detail": exc.message}
        except TransportError as exc:
            logger.warning(f"[engine:probe] unreachable url={url} code={exc.code} error={exc.message}")
            return {"reachable": False, "url": url, "error": exc.message}
        status = resp.get("status") or 0
        return {
            "reachable": status < 500,
            "url": url,
            "status": status,
            "latencyMs": int((time.monotonic() - started) * 1000),
        }

"""PollingEngine: follows one remote execution until it stops.

Each cycle:
1. Check stop guards (consecutive failures, attempt ceiling, optional hard ceiling).
2. Count the attempt, emit `step`, fetch the status document.
3. Transport failure: emit `polling_error`, wait the error interval, loop.
4. Success: reset failures, classify, report workflow errors (sticky, first
   sighting escalated once), emit `update`.
5. Finished: emit `workflow_completed` and stop; otherwise wait the scheduled
   interval and loop.

Workflow-level errors never abort polling unless the config says so; the
remote engine's error reporting is unreliable and partial results are still
useful to the caller.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from flowrelay.core.config import PollingConfig
from flowrelay.core.exceptions import SinkClosedError, TransportError, WorkflowError
from flowrelay.core.interfaces.event_sink import EventSinkPort
from flowrelay.core.interfaces.http_client import HttpClientPort
from flowrelay.core.interfaces.metrics import MetricsPort
from flowrelay.core.managers.classifier import classify
from flowrelay.core.managers.scheduler import poll_interval
from flowrelay.core.models.events import EventType
from flowrelay.core.models.poll_state import PollPhase, PollResult, PollState
from flowrelay.core.models.status import ClassifiedError, StatusDocument
from flowrelay.core.settings import logger

OnFinished = Callable[[PollResult], Awaitable[None]]


class PollingEngine:
    """Drives the fetch -> classify -> emit -> wait loop for a single job.

    One instance per job; the PollState it creates never leaves `run`.
    """

    def __init__(
        self,
        http_client: HttpClientPort,
        sink: EventSinkPort,
        config: PollingConfig,
        resolve_locator: Optional[Callable[[str], str]] = None,
        metrics: Optional[MetricsPort] = None,
        request_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._http = http_client
        self._sink = sink
        self.config = config
        self._resolve = resolve_locator or (lambda locator: locator)
        self._metrics = metrics
        self._headers = request_headers or {}

    @property
    def job_id(self) -> str:
        return self._sink.correlation_id

    async def run(
        self,
        status_url: str,
        on_finished: Optional[OnFinished] = None,
    ) -> PollResult:
        """Poll `status_url` until a terminal state and return the outcome.

        `on_finished` runs after the loop stops and before the closing
        `polling_ended` event, so the caller's summary lands in between.
        """
        state = PollState(
            document=StatusDocument(raw={"executionUrl": status_url, "finished": False})
        )
        state.transition(PollPhase.polling)
        cancelled: Optional[asyncio.CancelledError] = None
        logger.info(
            f"[poll:start] job_id={self.job_id} status_url={status_url} "
            f"max_attempts={self.config.max_attempts} hard_timeout={self.config.hard_timeout}"
        )

        try:
            await self._loop(state, self._resolve(status_url))
        except SinkClosedError:
            logger.info(
                f"[poll:interrupted] consumer gone job_id={self.job_id} attempts={state.attempts}"
            )
            if not state.is_terminal:
                state.transition(PollPhase.interrupted)
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # cancel() landed while the wait was already resolving
                cancelled = asyncio.CancelledError()
        except WorkflowError as exc:
            logger.warning(
                f"[poll:abort] workflow error with continue_on_workflow_error disabled "
                f"job_id={self.job_id} message={exc.message}"
            )
            if not state.is_terminal:
                state.transition(PollPhase.workflow_failed)
        except asyncio.CancelledError as exc:
            logger.info(
                f"[poll:cancelled] job_id={self.job_id} attempts={state.attempts}"
            )
            if not state.is_terminal:
                state.transition(PollPhase.interrupted)
            cancelled = exc

        result = self._result(state)
        try:
            if on_finished is not None:
                await on_finished(result)
        except SinkClosedError:
            if cancelled is None:
                raise
            logger.debug(f"[poll:end] consumer gone before summary job_id={self.job_id}")
        finally:
            await self._emit_polling_ended(state, result)
        # report the interruption before propagating the cancellation
        if cancelled is not None:
            raise cancelled
        return result

    # ---------------- Loop -----------------
    async def _loop(self, state: PollState, status_url: str) -> None:
        cfg = self.config
        while True:
            if state.consecutive_failures >= cfg.max_consecutive_failures:
                logger.error(
                    f"[poll:give-up] too many consecutive errors job_id={self.job_id} "
                    f"consecutive_failures={state.consecutive_failures}"
                )
                await self._emit(
                    EventType.too_many_errors,
                    {
                        "message": f"Too many consecutive errors ({state.consecutive_failures})",
                        "attempt": state.attempts,
                        "consecutiveFailures": state.consecutive_failures,
                        "maxConsecutiveFailures": cfg.max_consecutive_failures,
                    },
                )
                state.transition(PollPhase.network_failure)
                return

            if state.attempts >= cfg.max_attempts:
                logger.warning(
                    f"[poll:give-up] attempt ceiling reached job_id={self.job_id} attempts={state.attempts}"
                )
                state.transition(PollPhase.max_attempts)
                return

            if cfg.hard_timeout is not None and state.elapsed_seconds() >= cfg.hard_timeout:
                logger.warning(
                    f"[poll:give-up] hard timeout reached job_id={self.job_id} "
                    f"elapsed={state.elapsed_seconds():.1f}s limit={cfg.hard_timeout}s"
                )
                state.transition(PollPhase.timed_out)
                return

            # every cycle counts, whatever the fetch outcome
            state.attempts += 1
            await self._emit(
                EventType.step,
                {
                    "message": f"Check {state.attempts}/{cfg.max_attempts} ({state.elapsed_seconds():.0f}s)",
                    "executionUrl": status_url,
                    "attempt": state.attempts,
                    "maxAttempts": cfg.max_attempts,
                    "elapsedSeconds": round(state.elapsed_seconds(), 1),
                    "consecutiveFailures": state.consecutive_failures,
                    "status": "post-error" if state.error_seen else "normal",
                },
            )

            try:
                document, server_status, duration = await self._fetch(status_url)
            except TransportError as exc:
                await self._handle_transport_error(state, exc, status_url)
                continue

            state.record_success(document)
            if document.execution_url:
                status_url = self._resolve(document.execution_url)

            classification = classify(document)
            if classification.is_error:
                await self._report_workflow_error(state, classification, document)

            next_interval = poll_interval(state.attempts, classification.is_error, cfg)
            logger.debug(
                f"[poll:update] job_id={self.job_id} attempt={state.attempts} status={server_status} "
                f"finished={document.finished} error_kind={classification.kind} "
                f"duration_ms={duration} next={next_interval}s"
            )
            await self._emit(
                EventType.update,
                {
                    "data": document.data,
                    "attempt": state.attempts,
                    "pollDurationMs": duration,
                    "elapsedSeconds": round(state.elapsed_seconds(), 1),
                    "nextPollIn": next_interval,
                    "serverStatus": server_status,
                    "hasError": classification.is_error,
                    "workflowStatus": state.workflow_status(),
                    "workflowFailed": state.error_seen,
                },
            )

            if document.finished:
                phase = state.completion_phase()
                logger.info(
                    f"[poll:finished] job_id={self.job_id} attempts={state.attempts} "
                    f"elapsed={state.elapsed_seconds():.1f}s phase={phase}"
                )
                await self._emit(
                    EventType.workflow_completed,
                    {
                        "message": (
                            "Workflow finished (errors were detected while polling)"
                            if state.error_seen
                            else "Workflow finished successfully"
                        ),
                        "totalAttempts": state.attempts,
                        "elapsedSeconds": round(state.elapsed_seconds(), 1),
                        "finalStatus": str(phase),
                        "hadErrors": state.error_seen,
                        "finalData": document.raw,
                    },
                )
                state.transition(phase)
                return

            await self._wait(next_interval)

    async def _fetch(self, url: str) -> tuple[StatusDocument, Any, int]:
        started = time.monotonic()
        resp = await self._http.get(url, headers=self._headers)
        duration_ms = int((time.monotonic() - started) * 1000)
        document = StatusDocument.from_body(resp.get("body"), url=url)
        return document, resp.get("status"), duration_ms

    async def _handle_transport_error(
        self, state: PollState, exc: TransportError, status_url: str
    ) -> None:
        failures = state.record_failure()
        will_retry = failures < self.config.max_consecutive_failures
        if self._metrics is not None:
            self._metrics.record_error("transport")
        logger.warning(
            f"[poll:fetch-error] job_id={self.job_id} attempt={state.attempts} "
            f"consecutive_failures={failures} code={exc.code} error={exc.message} url={status_url}"
        )
        await self._emit(
            EventType.polling_error,
            {
                "error": exc.message,
                "errorCode": exc.code,
                "attempt": state.attempts,
                "consecutiveFailures": failures,
                "maxConsecutiveFailures": self.config.max_consecutive_failures,
                "willRetry": will_retry,
                "retryIn": self.config.error_interval if will_retry else None,
            },
        )
        if will_retry:
            await self._wait(self.config.error_interval)

    async def _report_workflow_error(
        self,
        state: PollState,
        classification: ClassifiedError,
        document: StatusDocument,
    ) -> None:
        payload = {
            "errorType": str(classification.kind),
            "message": classification.message,
            "severity": str(classification.severity),
            "attempt": state.attempts,
            "data": document.raw,
        }
        if state.record_workflow_error(classification):
            will_continue = self.config.continue_on_workflow_error
            logger.error(
                f"[poll:workflow-error] job_id={self.job_id} attempt={state.attempts} "
                f"kind={classification.kind} severity={classification.severity} continue={will_continue}"
            )
            await self._emit(EventType.error_detected, {**payload, "willContinue": will_continue})
            if not will_continue:
                raise WorkflowError(classification, job_id=self.job_id)
            return

        logger.debug(
            f"[poll:workflow-error] persisting job_id={self.job_id} attempt={state.attempts} "
            f"kind={classification.kind}"
        )
        await self._emit(EventType.error_persisting, payload)

    # ---------------- Sink helpers -----------------
    async def _emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._sink.emit(str(event_type), payload)

    async def _wait(self, seconds: float) -> None:
        """Sleep `seconds`, returning early with SinkClosedError if the consumer leaves."""
        if self._sink.closed:
            raise SinkClosedError("Stream consumer disconnected", job_id=self.job_id)
        try:
            await asyncio.wait_for(self._sink.wait_closed(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise SinkClosedError("Stream consumer disconnected during wait", job_id=self.job_id)

    def _result(self, state: PollState) -> PollResult:
        return PollResult(
            document=state.document or StatusDocument(),
            terminal_state=state.phase,
            total_attempts=state.attempts,
            total_elapsed_seconds=state.elapsed_seconds(),
            error_seen=state.error_seen,
            consecutive_failures=state.consecutive_failures,
        )

    async def _emit_polling_ended(self, state: PollState, result: PollResult) -> None:
        logger.info(
            f"[poll:end] job_id={self.job_id} state={result.terminal_state} attempts={result.total_attempts} "
            f"elapsed={result.total_elapsed_seconds:.1f}s error_seen={result.error_seen}"
        )
        if self._sink.closed:
            return
        try:
            await self._emit(
                EventType.polling_ended,
                {
                    "totalAttempts": result.total_attempts,
                    "totalElapsedSeconds": round(result.total_elapsed_seconds, 1),
                    "startedAt": state.started_at.isoformat(),
                    "terminalState": str(result.terminal_state),
                    "finished": result.document.finished,
                    "errorSeen": result.error_seen,
                    "consecutiveFailures": state.consecutive_failures,
                    "success": result.success,
                    "finalData": result.document.raw,
                },
            )
        except SinkClosedError:
            logger.debug(f"[poll:end] consumer gone before polling_ended job_id={self.job_id}")

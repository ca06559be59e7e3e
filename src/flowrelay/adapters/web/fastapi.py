# flowrelay/adapters/web/fastapi.py
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from flowrelay.adapters.metrics_inmemory import InMemoryMetrics
from flowrelay.adapters.sse_event_sink import SSE_HEADERS, QueueEventSink
from flowrelay.core.exceptions import JobTypeNotFound
from flowrelay.core.interfaces.http_client import HttpClientPort
from flowrelay.core.logging_config import coerce_level, correlation_id_var
from flowrelay.core.managers.job_launcher import JobLauncher
from flowrelay.core.models.problem import ProblemResponse
from flowrelay.core.settings import app_settings, logger

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# Note: this is a driver adapter. It depends on the core (JobLauncher) but
# the core does not depend on it.
def create_app(
    job_launcher_factory: Callable[[HttpClientPort], JobLauncher],
    http_client: HttpClientPort,
    metrics: InMemoryMetrics | None = None,
    cors_origins: list[str] | None = None,
):
    """Create the FastAPI app.

    The HTTP client, job types and retry policy are assembled outside and the
    launcher is handed in as a factory, so this module only deals with HTTP
    and stream lifecycles.
    """
    metrics = metrics or InMemoryMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with http_client as client:
            launcher = job_launcher_factory(client)
            app.state.job_launcher = launcher
            try:
                yield
            finally:
                await launcher.shutdown()

    app = FastAPI(title="flowrelay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins is not None else app_settings.RELAY_CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    def render_problem(problem: ProblemResponse) -> JSONResponse:
        payload = jsonable_encoder(problem.model_dump(exclude_none=True))
        return JSONResponse(
            status_code=problem.status,
            content=payload,
            media_type="application/problem+json",
        )

    def build_problem(
        status: int,
        title: str,
        detail: str,
        request: Request,
        type_uri: str = "about:blank",
    ) -> ProblemResponse:
        return ProblemResponse(
            type=type_uri,
            title=title,
            status=status,
            detail=detail,
            instance=str(request.url),
        )

    # Correlation ID middleware: assigns per-request id (header override) and exposes it to logging
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        incoming = request.headers.get("x-request-id")
        cid = incoming or uuid.uuid4().hex[:12]
        # set context var so logs (and job tasks started by this request) carry this id
        token = correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Request-ID"] = cid
        return response

    @app.exception_handler(JobTypeNotFound)
    async def job_type_not_found_handler(request: Request, exc: JobTypeNotFound):
        metrics.record_error("not_found")
        problem = build_problem(
            status=404,
            title="Job Type Not Found",
            detail=exc.message,
            request=request,
        )
        return render_problem(problem)

    async def read_body(request: Request) -> Dict[str, Any]:
        try:
            raw = await request.json()
        except ValueError:
            raw = {}
        return raw if isinstance(raw, dict) else {"data": raw}

    def stream(
        endpoint: str,
        start: Callable[[QueueEventSink], asyncio.Task],
    ) -> StreamingResponse:
        """Start a job task feeding a fresh sink and stream the sink as SSE."""
        sink = QueueEventSink(correlation_id_var.get())
        metrics.request_started(endpoint)
        try:
            task = start(sink)
        except Exception:
            metrics.request_finished(endpoint)
            raise
        logger.info(f"[sse:open] endpoint={endpoint} job_id={sink.correlation_id}")

        async def frames():
            try:
                async for frame in sink.sse_frames():
                    yield frame
            finally:
                # runs on normal end and on client disconnect (generator closed)
                sink.close()
                if not task.done():
                    logger.info(f"[sse:disconnect] cancelling job job_id={sink.correlation_id}")
                    task.cancel()
                metrics.request_finished(endpoint)

        return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/health")
    async def health():
        launcher: JobLauncher = app.state.job_launcher
        engine = await launcher.probe_engine()
        return {
            "status": "OK" if engine.get("reachable") else "DEGRADED",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(metrics.uptime_seconds(), 1),
            "activeJobs": launcher.active_jobs,
            "engine": engine,
            "metrics": metrics.snapshot(),
        }

    @app.get("/api/webhooks")
    async def list_webhooks():
        launcher: JobLauncher = app.state.job_launcher
        webhooks = []
        for job_type in launcher.list_job_types():
            for route in job_type.routes:
                webhooks.append(
                    {
                        "path": route,
                        "method": "POST",
                        "jobType": job_type.name,
                        "description": job_type.description or job_type.start_message,
                        "stream": "text/event-stream",
                    }
                )
            webhooks.append(
                {
                    "path": f"/jobs/{job_type.name}",
                    "method": "POST",
                    "jobType": job_type.name,
                    "description": job_type.description or job_type.start_message,
                    "stream": "text/event-stream",
                }
            )
        webhooks.append(
            {
                "path": "/api/execution/{execution_id}",
                "method": "GET",
                "description": "Look up one execution on the workflow engine",
                "stream": "text/event-stream",
            }
        )
        return {"webhooks": webhooks, "total": len(webhooks)}

    @app.get("/debug/stats")
    async def debug_stats():
        launcher: JobLauncher = app.state.job_launcher
        return {
            **metrics.snapshot(),
            "activeJobs": launcher.active_jobs,
            "jobTypes": [job_type.name for job_type in launcher.list_job_types()],
            "logLevel": logging.getLevelName(logging.getLogger("flowrelay").getEffectiveLevel()),
        }

    @app.post("/debug/log-level")
    async def set_log_level(request: Request):
        body = await read_body(request)
        requested = str(body.get("level") or "").upper()
        if requested not in LOG_LEVELS:
            problem = build_problem(
                status=400,
                title="Invalid Log Level",
                detail=f"Available levels: {', '.join(LOG_LEVELS)}",
                request=request,
            )
            return render_problem(problem)
        relay_logger = logging.getLogger("flowrelay")
        old_level = logging.getLevelName(relay_logger.getEffectiveLevel())
        relay_logger.setLevel(coerce_level(requested))
        logging.getLogger().setLevel(coerce_level(requested))
        logger.info(f"[debug:log-level] changed from={old_level} to={requested}")
        return {"oldLevel": old_level, "newLevel": requested, "availableLevels": list(LOG_LEVELS)}

    @app.get("/api/execution/{execution_id}")
    async def lookup_execution(execution_id: str):
        launcher: JobLauncher = app.state.job_launcher
        return stream(
            "/api/execution",
            lambda sink: launcher.start_lookup(execution_id, sink),
        )

    @app.post("/jobs/{job_type_name}")
    async def launch_by_name(job_type_name: str, request: Request):
        launcher: JobLauncher = app.state.job_launcher
        job_type = launcher.get_job_type(job_type_name)
        body = await read_body(request)
        return stream(
            f"/jobs/{job_type.name}",
            lambda sink: launcher.start(job_type, body, sink),
        )

    # Catch-all: job type routes are data (job_types.yaml) and may change on
    # reload, so they are resolved per request. Must stay registered last.
    @app.post("/{route:path}")
    async def launch_by_route(route: str, request: Request):
        launcher: JobLauncher = app.state.job_launcher
        job_type = launcher.job_type_for_route(route)
        body = await read_body(request)
        return stream(
            "/" + route.strip("/"),
            lambda sink: launcher.start(job_type, body, sink),
        )

    return app

# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the GBP Check automation service.

Requests are admitted into a single-worker queue; each job opens its own
browser, runs the analysis flow and reports through the session status
store, which callers poll.

Example Usage:
    Start the service:
    ```bash
    uvicorn gbprunner.service.app:app --host 0.0.0.0 --port 3000
    ```

    Queue an analysis:
    ```bash
    curl -X POST http://localhost:3000/automate \\
      -H "Content-Type: application/json" \\
      -d '{"url": "https://maps.google.com/maps/place/X", "wait_time": 300}'
    ```

    Poll it:
    ```bash
    curl http://localhost:3000/status/{session_id}
    ```
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from gbprunner import __version__
from gbprunner.core.artifacts import ArtifactStore
from gbprunner.core.runner import AutomationRunner
from gbprunner.core.scheduler import JobParams, JobState, Scheduler
from gbprunner.core.webhook import WebhookNotifier
from gbprunner.exceptions import AdmissionError, GbpRunnerError, SchedulerClosedError, ValidationError
from gbprunner.service.config import ServiceConfig, get_config
from gbprunner.service.models import (
    ApiDataResponse,
    ArtifactListResponse,
    AutomateRequest,
    AutomateResponse,
    CleanupResponse,
    ErrorResponse,
    HealthResponse,
    QueueFullResponse,
    QueuePositionResponse,
    RemoveResponse,
    StatusResponse,
)
from gbprunner.service.session_store import SessionStore
from gbprunner.service.validation import clean_target_url, validate_name, validate_wait_time
from gbprunner.utils.logger import logger

# Global state
config: Optional[ServiceConfig] = None
scheduler: Optional[Scheduler] = None
runner: Any = None
session_store: Optional[SessionStore] = None
artifact_store: Optional[ArtifactStore] = None
start_time: float = 0


def configure_services(service_config: Optional[ServiceConfig] = None, job_runner: Any = None) -> None:
    """
    Build the service objects.

    ``job_runner`` is anything with an async ``execute(job)`` and a
    ``last_api_data`` dict; by default an AutomationRunner driving a real
    browser.
    """
    global config, scheduler, runner, session_store, artifact_store, start_time

    config = service_config or get_config()
    artifact_store = ArtifactStore(config.storage.screenshots_dir, config.storage.downloads_dir)
    artifact_store.ensure_dirs()

    if job_runner is None:
        webhook = None
        if config.webhook.url:
            webhook = WebhookNotifier(
                config.webhook.url,
                timeout=config.webhook.timeout,
                user_agent=config.webhook.user_agent,
            )
        job_runner = AutomationRunner(config, artifact_store, webhook=webhook)
    runner = job_runner

    session_store = SessionStore()
    scheduler = Scheduler(
        runner.execute,
        max_size=config.queue.max_size,
        history_size=config.queue.history_size,
        sample_window=config.queue.sample_window,
        default_duration=config.queue.default_duration,
        on_change=session_store.record,
    )
    start_time = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup and shutdown.

    - Startup: build the services unless ``configure_services`` already did
    - Shutdown: stop the scheduler, cancelling the job in flight
    """
    global config, scheduler, runner, session_store, artifact_store

    logger.info("Starting GBP Check automation service...")
    if scheduler is None:
        configure_services()
    logger.info(
        f"Service started in {config.env} (max queue {config.queue.max_size}, "
        f"webhook {'enabled' if config.webhook.url else 'disabled'})"
    )

    yield

    logger.info("Shutting down GBP Check automation service...")
    await scheduler.shutdown()
    config = scheduler = runner = session_store = artifact_store = None
    logger.info("Service shut down")


app = FastAPI(
    title="GBP Check Automation API",
    description="Queued browser automation of the GBP Check analysis flow.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    license_info={
        "name": "Apache 2.0",
        "url": "https://www.apache.org/licenses/LICENSE-2.0.html",
    },
    openapi_tags=[
        {"name": "Health", "description": "Service status"},
        {"name": "Automation", "description": "Queue, poll and cancel automation runs"},
        {"name": "Artifacts", "description": "Screenshots, downloads and intercepted API data"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(AdmissionError)
async def admission_exception_handler(request, exc: AdmissionError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=QueueFullResponse(
            message="The automation queue is full, try again later",
            queue_size=exc.queue_size,
            max_queue_size=exc.max_queue_size,
        ).model_dump(),
    )


@app.exception_handler(SchedulerClosedError)
async def scheduler_closed_exception_handler(request, exc: SchedulerClosedError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error=exc.message, message=exc.message, code=exc.error_code).model_dump(),
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error=exc.message,
            message=exc.message,
            code=exc.error_code,
            details=exc.details,
        ).model_dump(),
    )


@app.exception_handler(GbpRunnerError)
async def runner_exception_handler(request, exc: GbpRunnerError):
    logger.error(f"Runner error: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=exc.message,
            message=exc.message,
            code=exc.error_code,
            details=exc.details,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="InternalServerError",
            message="An unexpected error occurred",
            details={"exception": str(exc)},
        ).model_dump(),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"], summary="Health check")
async def health_check():
    """Service status, uptime, version and a short queue summary."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        queue={
            "is_processing": scheduler.is_processing,
            "queue_size": scheduler.queue_size,
            "max_queue_size": scheduler.max_size,
            "average_completion_time_seconds": round(scheduler.average_duration),
        },
    )


@app.post(
    "/automate",
    response_model=AutomateResponse,
    tags=["Automation"],
    summary="Queue an automation run",
    responses={
        400: {"model": ErrorResponse, "description": "Missing or invalid url, name or wait_time"},
        503: {"model": QueueFullResponse, "description": "Queue is full"},
    },
)
async def automate(request: AutomateRequest):
    """
    Queue one analysis of ``url``.

    The job starts at once when the service is idle (``status`` is
    ``processing`` and ``queue_position`` is 1); otherwise it waits its
    turn. Poll ``/status/{session_id}`` for the outcome.
    """
    url = clean_target_url(request.url)
    name = validate_name(request.name)
    wait_time = validate_wait_time(request.wait_time)
    params = JobParams(
        wait_time=wait_time,
        button_selectors=list(request.button_selectors),
        headless=config.browser.default_headless if request.headless is None else request.headless,
        name=name,
    )

    ticket = await scheduler.enqueue(url, params)
    if ticket.status == "processing":
        message = "Automation started"
    else:
        message = f"Automation queued at position {ticket.position}"

    return AutomateResponse(
        session_id=ticket.job.id,
        message=message,
        status=ticket.status,
        queue_position=ticket.position,
        queue_size=ticket.queue_size,
        estimated_wait_seconds=ticket.estimated_wait_seconds,
    )


@app.get("/queue-status", tags=["Automation"], summary="Queue snapshot")
async def queue_status():
    """Current job, pending jobs with their estimates, and recent history."""
    return {"success": True, **scheduler.get_status()}


@app.get("/queue-position/{session_id}", response_model=QueuePositionResponse, tags=["Automation"])
async def queue_position(session_id: str):
    """Position of a job: pending index + 1, 0 while processing, -1 once finished."""
    position = scheduler.get_position(session_id)
    if position is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found in queue or history: {session_id}",
        )

    job = scheduler.get_job(session_id)
    estimate = scheduler.estimated_wait(position) if position > 0 else 0
    return QueuePositionResponse(
        session_id=session_id,
        status=job.state.value,
        position=position,
        estimated_wait_seconds=estimate,
    )


@app.get("/status/{session_id}", response_model=StatusResponse, tags=["Automation"])
async def session_status(session_id: str):
    """Latest status of a session; ``data`` holds the full result once finished."""
    entry = session_store.get(session_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session not found: {session_id}",
        )
    return StatusResponse(**entry)


@app.delete("/queue/{session_id}", response_model=RemoveResponse, tags=["Automation"])
async def remove_from_queue(session_id: str):
    """Remove a pending job. Running and finished jobs cannot be removed."""
    job = scheduler.get_job(session_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {session_id}",
        )
    if job.state != JobState.QUEUED or not await scheduler.remove(session_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {session_id} is {job.state.value} and cannot be removed",
        )

    session_store.mark_cancelled(session_id)
    return RemoveResponse(session_id=session_id, message="Job removed from queue")


def _artifact_response(directory: Path, filename: str) -> FileResponse:
    path = (directory / filename).resolve()
    if Path(filename).name != filename or path.parent != directory.resolve() or not path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File not found: {filename}",
        )
    return FileResponse(path)


@app.get("/screenshots", response_model=ArtifactListResponse, tags=["Artifacts"])
async def list_screenshots():
    files = artifact_store.list_screenshots()
    return ArtifactListResponse(count=len(files), files=files)


@app.delete("/screenshots/cleanup", response_model=CleanupResponse, tags=["Artifacts"])
async def cleanup_screenshots(max_age_hours: Optional[float] = None):
    """Delete screenshots older than ``max_age_hours`` (configured default 24)."""
    age = max_age_hours if max_age_hours is not None else config.storage.artifact_max_age_hours
    removed = artifact_store.cleanup_screenshots(age)
    return CleanupResponse(removed_count=len(removed), removed=removed, max_age_hours=age)


@app.get("/screenshots/{filename}", tags=["Artifacts"])
async def get_screenshot(filename: str):
    return _artifact_response(artifact_store.screenshots_dir, filename)


@app.get("/downloads", response_model=ArtifactListResponse, tags=["Artifacts"])
async def list_downloads():
    files = artifact_store.list_downloads()
    return ArtifactListResponse(count=len(files), files=files)


@app.delete("/downloads/cleanup", response_model=CleanupResponse, tags=["Artifacts"])
async def cleanup_downloads(max_age_hours: Optional[float] = None):
    """Delete downloads older than ``max_age_hours`` (configured default 24)."""
    age = max_age_hours if max_age_hours is not None else config.storage.artifact_max_age_hours
    removed = artifact_store.cleanup_downloads(age)
    return CleanupResponse(removed_count=len(removed), removed=removed, max_age_hours=age)


@app.get("/downloads/{filename}", tags=["Artifacts"])
async def get_download(filename: str):
    return _artifact_response(artifact_store.downloads_dir, filename)


@app.get("/api-data", response_model=ApiDataResponse, tags=["Artifacts"])
async def api_data():
    """Intercepted API requests and extracted analysis data of the latest run."""
    latest = getattr(runner, "last_api_data", None)
    if not latest:
        return ApiDataResponse(success=False, message="No automation run has finished yet")
    return ApiDataResponse(
        success=True,
        data=latest.get("api_data"),
        gbp_check_data=latest.get("gbp_check_data"),
    )

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
Job scheduling for the automation service.

There is one browser, so jobs run one at a time:
- Scheduler: admission-controlled FIFO queue with a single worker
- Job: one automation request and its outcome
- Wait estimates from a rolling average of recent job durations
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from gbprunner.exceptions import AdmissionError, SchedulerClosedError
from gbprunner.utils.logger import logger

_ID_ALPHABET = string.ascii_lowercase + string.digits


class JobState(str, Enum):
    """State of a job in the scheduler."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def new_session_id() -> str:
    """``automation_<epoch ms>_<9 base36 chars>``"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"automation_{int(time.time() * 1000)}_{suffix}"


@dataclass
class JobParams:
    """Caller-supplied parameters of one automation run.

    Attributes:
        wait_time: Completion deadline in seconds
        button_selectors: Start-button selectors tried before the defaults
        headless: Run the browser without a window
        name: Free-text requester name, echoed in the result
    """

    wait_time: float = 300.0
    button_selectors: List[str] = field(default_factory=list)
    headless: bool = False
    name: Optional[str] = None


@dataclass
class Job:
    """One automation request. Position is derived from the scheduler, never stored."""

    url: str
    params: JobParams = field(default_factory=JobParams)
    id: str = field(default_factory=new_session_id)
    state: JobState = JobState.QUEUED
    enqueued_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "name": self.params.name,
            "state": self.state.value,
            "enqueued_at": self.enqueued_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration, 1) if self.duration is not None else None,
            "error": self.error,
        }


@dataclass
class AdmissionTicket:
    """What the caller learns when a job is accepted."""

    job: Job
    position: int
    queue_size: int
    estimated_wait_seconds: int

    @property
    def status(self) -> str:
        return "processing" if self.position == 1 else "queued"


JobHandler = Callable[[Job], Awaitable[Dict[str, Any]]]
JobListener = Callable[[Job], None]


class Scheduler:
    """
    Admission-controlled FIFO queue feeding a single worker.

    Pending jobs are bounded by ``max_size``; beyond that ``enqueue``
    raises AdmissionError instead of blocking. Each drain step runs one
    job and schedules the next step as a new task.

    Example:
        >>> scheduler = Scheduler(runner.execute, max_size=10)
        >>> ticket = await scheduler.enqueue("https://maps.google.com/...", JobParams())
        >>> scheduler.get_position(ticket.job.id)
        0
    """

    def __init__(
        self,
        handler: JobHandler,
        max_size: int = 10,
        history_size: int = 50,
        sample_window: int = 10,
        default_duration: float = 120.0,
        on_change: Optional[JobListener] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.handler = handler
        self.max_size = max_size
        self.default_duration = default_duration
        self.on_change = on_change
        self._clock = clock
        self._pending: Deque[Job] = deque()
        self._current: Optional[Job] = None
        self._history: Deque[Job] = deque(maxlen=history_size)
        self._durations: Deque[float] = deque(maxlen=sample_window)
        self._lock = asyncio.Lock()
        self._drain_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_processing(self) -> bool:
        return self._current is not None

    @property
    def queue_size(self) -> int:
        return len(self._pending)

    @property
    def average_duration(self) -> float:
        """Mean of the recent duration samples; the seed value until one exists."""
        if not self._durations:
            return self.default_duration
        return sum(self._durations) / len(self._durations)

    def _notify(self, job: Job) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(job)
        except Exception as e:
            logger.error(f"Job listener failed for {job.id}: {e}")

    def _current_remaining(self) -> float:
        if self._current is None or self._current.started_at is None:
            return 0.0
        elapsed = self._clock() - self._current.started_at
        return max(0.0, self.average_duration - elapsed)

    def estimated_wait(self, position: int) -> int:
        """
        Seconds until the job at pending ``position`` (1-based) should start.

        Zero for the head of the queue when nothing is processing.
        Otherwise the remaining time of the current job plus one average
        duration per pending job ahead.
        """
        if position == 1 and self._current is None:
            return 0
        jobs_ahead = max(0, position - 1)
        return int(round(self._current_remaining() + jobs_ahead * self.average_duration))

    async def enqueue(self, url: str, params: Optional[JobParams] = None) -> AdmissionTicket:
        """
        Admit a job, or reject it when the pending queue is full.

        The ticket position counts the job being processed, so a job that
        will start immediately gets position 1 and status "processing".

        Raises:
            AdmissionError: When ``max_size`` jobs are already pending
            SchedulerClosedError: After ``shutdown()``
        """
        async with self._lock:
            if self._closed:
                raise SchedulerClosedError()
            if len(self._pending) >= self.max_size:
                logger.warning(f"Queue full ({len(self._pending)}/{self.max_size}), rejecting {url[:80]}")
                raise AdmissionError(len(self._pending), self.max_size)

            job = Job(url=url, params=params or JobParams(), enqueued_at=self._clock())
            self._pending.append(job)
            pending_position = len(self._pending)
            ticket = AdmissionTicket(
                job=job,
                position=pending_position + (1 if self._current is not None else 0),
                queue_size=len(self._pending),
                estimated_wait_seconds=self.estimated_wait(pending_position),
            )

        logger.info(
            f"Job {job.id} queued at position {ticket.position} "
            f"(estimated wait {ticket.estimated_wait_seconds}s)"
        )
        self._notify(job)
        self._schedule_drain()
        return ticket

    def _schedule_drain(self) -> None:
        if self._closed or self._current is not None:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self.process_next())

    async def process_next(self) -> Optional[Job]:
        """
        Run the job at the head of the queue.

        Returns None without doing anything while another job is
        processing or the queue is empty. Success or failure, the job's
        duration feeds the rolling average and the job moves to history.
        """
        async with self._lock:
            if self._current is not None or not self._pending:
                return None
            job = self._pending.popleft()
            job.state = JobState.PROCESSING
            job.started_at = self._clock()
            self._current = job

        logger.info(f"Processing job {job.id} ({len(self._pending)} still queued)")
        self._notify(job)

        try:
            job.result = await self.handler(job)
            job.state = JobState.COMPLETED
        except asyncio.CancelledError:
            job.error = "cancelled"
            job.state = JobState.FAILED
            raise
        except Exception as e:
            job.error = str(e)
            job.state = JobState.FAILED
            logger.error(f"Job {job.id} failed: {e}")
        finally:
            job.finished_at = self._clock()
            self._durations.append(job.finished_at - job.started_at)
            self._history.append(job)
            self._current = None
            logger.info(
                f"Job {job.id} finished as {job.state.value} in {job.duration:.1f}s "
                f"(average {self.average_duration:.1f}s)"
            )
            self._notify(job)
            if self._pending and not self._closed:
                self._drain_task = asyncio.create_task(self.process_next())

        return job

    async def remove(self, job_id: str) -> bool:
        """Remove a pending job. Processing and finished jobs are not removable."""
        async with self._lock:
            for job in self._pending:
                if job.id == job_id:
                    self._pending.remove(job)
                    logger.info(f"Job {job_id} removed from queue")
                    return True
        return False

    def get_job(self, job_id: str) -> Optional[Job]:
        if self._current is not None and self._current.id == job_id:
            return self._current
        for job in self._pending:
            if job.id == job_id:
                return job
        for job in reversed(self._history):
            if job.id == job_id:
                return job
        return None

    def get_position(self, job_id: str) -> Optional[int]:
        """Pending index + 1, 0 while processing, -1 in history, None if unknown."""
        if self._current is not None and self._current.id == job_id:
            return 0
        for index, job in enumerate(self._pending):
            if job.id == job_id:
                return index + 1
        if any(job.id == job_id for job in self._history):
            return -1
        return None

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the whole queue, recomputed on every call."""
        now = self._clock()
        current = None
        if self._current is not None:
            current = {
                **self._current.to_dict(),
                "elapsed_seconds": int(now - (self._current.started_at or now)),
            }

        queued = [
            {
                **job.to_dict(),
                "position": index + 1,
                "estimated_wait_seconds": self.estimated_wait(index + 1),
            }
            for index, job in enumerate(self._pending)
        ]
        recent = [job.to_dict() for job in list(reversed(self._history))[:10]]

        return {
            "is_processing": self.is_processing,
            "current_job": current,
            "queued_jobs": queued,
            "queue_size": len(self._pending),
            "max_queue_size": self.max_size,
            "recent_completed_jobs": recent,
            "completed_count": len(self._history),
            "average_completion_time_seconds": round(self.average_duration),
        }

    async def wait_idle(self) -> None:
        """Wait until the queue is drained."""
        while self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    async def shutdown(self) -> None:
        """Stop draining; cancels the job in flight."""
        self._closed = True
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

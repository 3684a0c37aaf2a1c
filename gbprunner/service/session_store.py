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

"""Polling store for automation session status."""

import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from gbprunner.core.scheduler import Job, JobState
from gbprunner.utils.logger import logger


class SessionStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"

    FINISHED = {COMPLETED, TIMEOUT, ERROR, CANCELLED}


def status_for(job: Job) -> str:
    """Session status of a job; a finished job whose watch timed out reports ``timeout``."""
    if job.state == JobState.QUEUED:
        return SessionStatus.QUEUED
    if job.state == JobState.PROCESSING:
        return SessionStatus.RUNNING
    if job.state == JobState.FAILED:
        return SessionStatus.ERROR
    if job.result and job.result.get("process_completed"):
        return SessionStatus.COMPLETED
    return SessionStatus.TIMEOUT


class SessionStore:
    """
    Keeps the latest status of every automation session for ``GET /status``.

    Updated from Scheduler transitions. Once ``max_entries`` is exceeded
    the oldest finished sessions are dropped.
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._sessions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def record(self, job: Job) -> None:
        now = time.time()
        entry = self._sessions.get(job.id)
        if entry is None:
            entry = {"session_id": job.id, "start_time": job.enqueued_at, "url": job.url}
            self._sessions[job.id] = entry

        entry["status"] = status_for(job)
        entry["last_update"] = now
        if job.state in (JobState.QUEUED, JobState.PROCESSING):
            entry["data"] = {"state": job.state.value}
        elif job.state == JobState.FAILED:
            entry["data"] = {"success": False, "error": job.error}
        else:
            entry["data"] = job.result

        self._evict()

    def mark_cancelled(self, session_id: str) -> None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return
        entry["status"] = SessionStatus.CANCELLED
        entry["last_update"] = time.time()
        entry["data"] = {"success": False, "error": "Removed from queue"}

    def _evict(self) -> None:
        while len(self._sessions) > self.max_entries:
            victim = next(
                (sid for sid, e in self._sessions.items() if e["status"] in SessionStatus.FINISHED),
                None,
            )
            if victim is None:
                return
            del self._sessions[victim]
            logger.debug(f"Evicted session status: {victim}")

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        end = entry["last_update"] if entry["status"] in SessionStatus.FINISHED else time.time()
        return {**entry, "elapsed_seconds": int(end - entry["start_time"])}

    def __len__(self) -> int:
        return len(self._sessions)

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
Pydantic models for the automation REST API.

``url``, ``name`` and ``wait_time`` on AutomateRequest accept any JSON value; bad values
are answered with a 400 ErrorResponse rather than the
framework's 422 (see ``gbprunner.service.validation``).

Example:
    >>> from gbprunner.service.models import AutomateRequest
    >>> request = AutomateRequest(url="https://maps.google.com/maps/place/X", wait_time=120)
    >>> print(request.model_dump_json())
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AutomateRequest(BaseModel):
    """
    Request to queue one automation run.

    Attributes:
        url: Business profile, maps or share link to analyse
        wait_time: Completion deadline in seconds
        button_selectors: Extra start-button selectors, tried before the defaults
        headless: Run without a browser window
        name: Free-text requester name
    """

    url: Any = Field(None, description="Target URL")
    wait_time: Any = Field(300, description="Completion deadline in seconds")
    button_selectors: List[str] = Field(default_factory=list, description="Custom start-button selectors")
    headless: Optional[bool] = Field(None, description="Run the browser without a window; configured default when omitted")
    name: Any = Field(None, description="Requester name")


class AutomateResponse(BaseModel):
    """Response for an accepted automation request."""

    success: bool = Field(True, description="Always true for an accepted job")
    session_id: str = Field(..., description="Session identifier for polling")
    message: str = Field(..., description="Human-readable summary")
    status: str = Field(..., description="processing or queued")
    queue_position: int = Field(..., description="1 when the job starts immediately")
    queue_size: int = Field(..., description="Pending jobs after admission")
    estimated_wait_seconds: int = Field(..., description="Estimated seconds until the job starts")


class QueueFullResponse(BaseModel):
    """Response when admission is rejected."""

    success: bool = Field(False)
    error: str = Field("Queue is full")
    message: str = Field(..., description="Error message")
    queue_size: int = Field(..., description="Pending jobs")
    max_queue_size: int = Field(..., description="Admission limit")


class QueuePositionResponse(BaseModel):
    """Position of one job. 0 means processing, -1 means finished."""

    success: bool = Field(True)
    session_id: str = Field(..., description="Session identifier")
    status: str = Field(..., description="queued, processing, completed or failed")
    position: int = Field(..., description="Pending position, 0 or -1")
    estimated_wait_seconds: int = Field(0, description="Estimated seconds until the job starts")


class StatusResponse(BaseModel):
    """Latest known status of one session."""

    session_id: str = Field(..., description="Session identifier")
    status: str = Field(..., description="queued, running, completed, timeout, error or cancelled")
    url: Optional[str] = Field(None, description="Requested URL")
    start_time: float = Field(..., description="Admission timestamp")
    last_update: float = Field(..., description="Timestamp of the latest change")
    elapsed_seconds: int = Field(..., description="Seconds since admission")
    data: Optional[Dict[str, Any]] = Field(None, description="State, error or full result")


class RemoveResponse(BaseModel):
    """Response after removing a pending job."""

    success: bool = Field(True)
    session_id: str = Field(..., description="Removed session")
    message: str = Field(..., description="Human-readable summary")


class ArtifactListResponse(BaseModel):
    """Listing of screenshots or downloads, sorted by file name."""

    success: bool = Field(True)
    count: int = Field(..., description="Number of files")
    files: List[Dict[str, Any]] = Field(default_factory=list, description="filename, url, size, created")


class CleanupResponse(BaseModel):
    """Result of an age-based artifact cleanup."""

    success: bool = Field(True)
    removed_count: int = Field(..., description="Files removed")
    removed: List[str] = Field(default_factory=list, description="Removed file names")
    max_age_hours: float = Field(..., description="Age threshold used")


class ApiDataResponse(BaseModel):
    """Intercepted API data of the most recent run."""

    success: bool = Field(..., description="False when no run has finished yet")
    message: Optional[str] = Field(None)
    data: Optional[Dict[str, Any]] = Field(None, description="Request summary")
    gbp_check_data: Optional[Dict[str, Any]] = Field(None, description="Extracted analysis data")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    queue: Dict[str, Any] = Field(default_factory=dict, description="Queue summary")


class ErrorResponse(BaseModel):
    """Error response."""

    success: bool = Field(False)
    error: str = Field(..., description="Error summary")
    message: str = Field(..., description="Error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")

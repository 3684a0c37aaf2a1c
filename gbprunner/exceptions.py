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
Exception hierarchy for the GBP Check runner.

Only BrowserSetupError and an exhausted NavigationError abort a job. The
other errors are raised at their seams and handled by the caller, which
degrades toward finishing the job with best-effort artifacts.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class GbpRunnerError(Exception):
    """Base class for all runner errors."""

    error_code = "runner_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AdmissionError(GbpRunnerError):
    """The pending queue is full; the request was rejected without a job record."""

    error_code = "queue_full"

    def __init__(self, queue_size: int, max_queue_size: int) -> None:
        super().__init__(
            "Queue is full",
            {"queue_size": queue_size, "max_queue_size": max_queue_size},
        )
        self.queue_size = queue_size
        self.max_queue_size = max_queue_size


class SchedulerClosedError(GbpRunnerError):
    """The scheduler was shut down and admits no more jobs."""

    error_code = "scheduler_closed"

    def __init__(self) -> None:
        super().__init__("Scheduler is shut down")


class ValidationError(GbpRunnerError):
    """Request parameters failed validation (bad URL, bad name type)."""

    error_code = "validation_error"


class BrowserError(GbpRunnerError):
    """Generic browser failure."""

    error_code = "browser_error"


class BrowserSetupError(BrowserError):
    """The browser, context or first page could not be created."""

    error_code = "browser_setup_error"


class NavigationError(BrowserError):
    """
    Navigation failed.

    ``kind`` is one of ``timeout``, ``dns``, ``connection_refused``,
    ``network`` or ``other``.
    """

    error_code = "navigation_error"

    def __init__(self, message: str, url: str = "", kind: str = "other") -> None:
        super().__init__(message, {"url": url, "kind": kind})
        self.url = url
        self.kind = kind


class SelectorNotFoundError(BrowserError):
    """None of the requested selectors resolved to an element in time."""

    error_code = "selector_not_found"

    def __init__(self, selectors: List[str], timeout: float = 0.0) -> None:
        super().__init__(
            f"No element found for {len(selectors)} selector(s)",
            {"selectors": list(selectors), "timeout": timeout},
        )
        self.selectors = list(selectors)


class ClickError(BrowserError):
    """An element was found but clicking it failed."""

    error_code = "click_error"


class CorrectionFailure(GbpRunnerError):
    """A map redirect or top-mode fix did not converge."""

    error_code = "correction_failure"

    def __init__(self, message: str, step: str, failed_checks: Optional[List[str]] = None) -> None:
        super().__init__(message, {"step": step, "failed_checks": failed_checks or []})
        self.step = step
        self.failed_checks = failed_checks or []


class CleanupError(GbpRunnerError):
    """Closing a browser resource failed. Logged, never propagated."""

    error_code = "cleanup_error"

    def __init__(self, resource: str, cause: BaseException) -> None:
        super().__init__(f"Failed to close {resource}: {cause}", {"resource": resource})
        self.resource = resource


class WebhookDeliveryError(GbpRunnerError):
    """The completion webhook could not be delivered."""

    error_code = "webhook_delivery_error"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, {"status": status})
        self.status = status


__all__ = [
    "GbpRunnerError",
    "AdmissionError",
    "SchedulerClosedError",
    "ValidationError",
    "BrowserError",
    "BrowserSetupError",
    "NavigationError",
    "SelectorNotFoundError",
    "ClickError",
    "CorrectionFailure",
    "CleanupError",
    "WebhookDeliveryError",
]

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
GBP Check runner - queued browser automation of the GBP Check analysis flow.

A FastAPI service admits requests into a single-worker queue; each job opens
a fresh browser, steers the page into the mode the GBP Check extension
expects, starts the extension and watches passively for its completion.
"""

__version__ = "1.0.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from gbprunner.exceptions import (
    AdmissionError,
    GbpRunnerError,
    NavigationError,
    ValidationError,
)
from gbprunner.core.scheduler import Job, JobParams, JobState, Scheduler
from gbprunner.core.runner import AutomationRunner
from gbprunner.service.config import ServiceConfig, get_config

__all__ = [
    # Scheduling
    "Job",
    "JobParams",
    "JobState",
    "Scheduler",
    # Execution
    "AutomationRunner",
    # Configuration
    "ServiceConfig",
    "get_config",
    # Errors
    "AdmissionError",
    "GbpRunnerError",
    "NavigationError",
    "ValidationError",
]

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
Per-phase timing for automation jobs.

The runner wraps each phase of a job (navigation, correction, start-button
search, monitoring, artifact collection) in ``time_phase`` and reports the
collected ``TimingInfo`` in the job result.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional


@dataclass
class TimingInfo:
    """
    Container for timing information.

    Attributes:
        total_ms: Wall time since the timer was started
        breakdown: Total milliseconds per phase name (a phase may run twice)
        step_timings: Every recorded phase in order
    """
    total_ms: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=dict)
    step_timings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_ms": round(self.total_ms, 2),
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
            "step_timings": [
                {**st, "duration_ms": round(st.get("duration_ms", 0), 2)}
                for st in self.step_timings
            ],
        }


class StepTimer:
    """Records named phase durations for a single job."""

    def __init__(self) -> None:
        self._start_times: Dict[str, float] = {}
        self._step_timings: List[Dict[str, Any]] = []
        self._overall_start: Optional[float] = None

    def start(self) -> None:
        self._overall_start = time.perf_counter()

    def start_step(self, step_name: str) -> None:
        self._start_times[step_name] = time.perf_counter()

    def end_step(
        self,
        step_name: str,
        metadata: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> float:
        """End ``step_name`` and return its duration in milliseconds (0 if never started)."""
        if step_name not in self._start_times:
            return 0.0

        duration = (time.perf_counter() - self._start_times.pop(step_name)) * 1000
        entry: Dict[str, Any] = {"step": step_name, "duration_ms": duration, "success": success}
        if metadata:
            entry.update(metadata)
        self._step_timings.append(entry)
        return duration

    def get_total_ms(self) -> float:
        if self._overall_start is None:
            return 0.0
        return (time.perf_counter() - self._overall_start) * 1000

    def get_timings(self) -> TimingInfo:
        breakdown: Dict[str, float] = {}
        for step in self._step_timings:
            breakdown[step["step"]] = breakdown.get(step["step"], 0.0) + step["duration_ms"]
        return TimingInfo(
            total_ms=self.get_total_ms(),
            breakdown=breakdown,
            step_timings=self._step_timings.copy(),
        )


@asynccontextmanager
async def time_phase(
    timer: StepTimer,
    step_name: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AsyncIterator[None]:
    """
    Time an async block; the step is marked unsuccessful if it raises.

    Example:
        >>> async with time_phase(timer, "navigation"):
        ...     await session.navigate(url)
    """
    timer.start_step(step_name)
    success = True
    try:
        yield
    except Exception:
        success = False
        raise
    finally:
        timer.end_step(step_name, metadata, success)

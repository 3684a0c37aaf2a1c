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
Passive completion detection.

Once the start control is clicked, the browser extension drives the page.
CompletionWatcher only reads tab URLs until a completion pattern matches or
the deadline passes. The one page-level action it takes is switching the
tracked tab (on closure, or when another tab reached the primary pattern).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from gbprunner.core.browser import BrowserSession
from gbprunner.core.patterns import COMPLETION_PRIMARY, CompletionTier, is_browser_closed_error, match_completion
from gbprunner.utils.logger import logger


@dataclass
class WatchResult:
    """Outcome of a watch. ``completed=False`` with reason ``timeout`` is a normal result."""

    completed: bool
    url: str = ""
    matched_pattern: Optional[str] = None
    tier: Optional[CompletionTier] = None
    reason: Optional[str] = None
    elapsed_seconds: float = 0.0
    polls: int = 0

    @property
    def completion_method(self) -> str:
        if self.completed and self.tier is not None:
            return f"{self.tier.value}_pattern"
        return self.reason or "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "url": self.url,
            "matched_pattern": self.matched_pattern,
            "tier": self.tier.value if self.tier else None,
            "reason": self.reason,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "polls": self.polls,
        }


class CompletionWatcher:
    """
    Polls every open tab until a completion URL appears.

    ``clock`` and ``sleep`` default to ``time.monotonic`` and
    ``asyncio.sleep``.
    """

    def __init__(
        self,
        session: BrowserSession,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def _recover_closed_page(self) -> bool:
        """Adopt the newest open tab if the tracked one closed. False when none remain."""
        page = self.session.page
        if not page.is_closed():
            return True
        pages = self.session.pages
        if not pages:
            return False
        self.session.adopt(pages[-1])
        logger.info(f"Tracked tab closed, now watching newest tab: {self.session.current_url[:80]}")
        return True

    def _poll_once(self) -> Optional[WatchResult]:
        if not self._recover_closed_page():
            return WatchResult(completed=False, reason="no_tabs", url="")

        for page in self.session.pages:
            if COMPLETION_PRIMARY.search(page.url or ""):
                if page is not self.session.page:
                    logger.info(f"Completion found in another tab, switching: {page.url[:80]}")
                    self.session.adopt(page)
                return WatchResult(
                    completed=True,
                    url=page.url,
                    matched_pattern=COMPLETION_PRIMARY.pattern,
                    tier=CompletionTier.PRIMARY,
                )

        url = self.session.current_url
        match = match_completion(url)
        if match is not None:
            tier, pattern = match
            return WatchResult(completed=True, url=url, matched_pattern=pattern, tier=tier)
        return None

    async def watch_until(self, deadline_seconds: float) -> WatchResult:
        """
        Poll until completion or until ``deadline_seconds`` have elapsed.

        Returns:
            WatchResult with ``completed=True`` on a pattern match, otherwise
            a reason of ``timeout``, ``no_tabs`` or ``browser_closed``
        """
        start = self._clock()
        polls = 0
        logger.info(f"Passive monitoring started (deadline={deadline_seconds}s, interval={self.poll_interval}s)")

        while True:
            polls += 1
            try:
                result = self._poll_once()
            except Exception as e:
                if is_browser_closed_error(e):
                    logger.warning(f"Browser closed during monitoring: {e}")
                    result = WatchResult(completed=False, reason="browser_closed", url="")
                else:
                    logger.warning(f"Monitoring poll {polls} failed: {e}")
                    result = None

            elapsed = self._clock() - start
            if result is not None:
                result.elapsed_seconds = elapsed
                result.polls = polls
                if result.completed:
                    logger.info(f"Completion detected ({result.tier.value}) after {elapsed:.1f}s: {result.url[:100]}")
                return result

            if elapsed >= deadline_seconds:
                logger.warning(f"Completion not detected within {deadline_seconds}s")
                return WatchResult(
                    completed=False,
                    reason="timeout",
                    url=self.session.current_url,
                    elapsed_seconds=elapsed,
                    polls=polls,
                )

            await self._sleep(min(self.poll_interval, max(0.0, deadline_seconds - elapsed)))

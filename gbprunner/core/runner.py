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
End-to-end execution of one automation job.

AutomationRunner.execute runs, in order: open a fresh browser, navigate
(with share-link fallbacks), correct the page mode, wait for the extension,
click its start control, watch passively for completion, collect artifacts,
close the browser, and notify the webhook. Only browser setup and
exhausted navigation abort the job; every other step degrades to a
best-effort result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from gbprunner.core.artifacts import ArtifactStore
from gbprunner.core.browser import BrowserSession
from gbprunner.core.corrector import CorrectionState, PageModeCorrector
from gbprunner.core.events import DownloadEvent, NewTabEvent, extract_gbp_data, summarize_intercepted
from gbprunner.core.patterns import (
    ALTERNATIVE_URLS,
    EXTENSION_MARKERS,
    POST_COMPLETION_SELECTOR,
    START_BUTTON_SELECTORS,
    is_maps_url,
    is_search_url,
    is_share_link,
)
from gbprunner.core.scheduler import Job
from gbprunner.core.watcher import CompletionWatcher, WatchResult
from gbprunner.core.webhook import WebhookNotifier
from gbprunner.exceptions import (
    BrowserError,
    ClickError,
    NavigationError,
    SelectorNotFoundError,
)
from gbprunner.service.config import ServiceConfig
from gbprunner.utils.logger import job_logger
from gbprunner.utils.timing import StepTimer, time_phase

SessionFactory = Callable[[bool], Awaitable[BrowserSession]]


@dataclass
class NavigationOutcome:
    url: str
    strategy: str
    alternative_used: bool = False


@dataclass
class ClickOutcome:
    clicked: bool
    selector: Optional[str]
    attempts: int


class AutomationRunner:
    """
    Runs jobs handed over by the Scheduler.

    Attributes:
        last_api_data: Intercepted API data of the most recent run, served
            by ``GET /api-data``
    """

    def __init__(
        self,
        config: ServiceConfig,
        artifacts: ArtifactStore,
        session_factory: Optional[SessionFactory] = None,
        webhook: Optional[WebhookNotifier] = None,
    ) -> None:
        self.config = config
        self.timeouts = config.timeouts
        self.artifacts = artifacts
        self.webhook = webhook
        self._session_factory = session_factory
        self.last_api_data: Dict[str, Any] = {}

    async def _open_session(self, headless: bool) -> BrowserSession:
        if self._session_factory is not None:
            return await self._session_factory(headless)
        return await BrowserSession.open(self.config.browser, self.timeouts, self.artifacts, headless=headless)

    async def navigate(self, session: BrowserSession, url: str, log: logging.LoggerAdapter) -> NavigationOutcome:
        """
        Navigate to ``url``; share links fall back to generic alternative URLs.

        Raises:
            NavigationError: When the target and every fallback failed
        """
        try:
            strategy = await session.navigate(url)
            return NavigationOutcome(url=session.current_url, strategy=strategy)
        except NavigationError as e:
            if not is_share_link(url):
                raise
            log.warning(f"Share link navigation failed ({e.kind}), trying {len(ALTERNATIVE_URLS)} alternatives")
            last_error = e

        for alternative in ALTERNATIVE_URLS:
            try:
                strategy = await session.navigate(alternative)
                log.info(f"Alternative URL loaded: {alternative}")
                return NavigationOutcome(url=session.current_url, strategy=strategy, alternative_used=True)
            except NavigationError as e:
                log.warning(f"Alternative URL failed: {alternative} ({e.kind})")
                last_error = e

        raise NavigationError(
            f"Failed to navigate to {url} and all alternative URLs",
            url=url,
            kind=last_error.kind,
        ) from last_error

    async def wait_for_extension(self, session: BrowserSession, log: logging.LoggerAdapter) -> int:
        """Fixed warm-up delay for the extension UI; returns how many of its elements are present."""
        log.info(f"Waiting {self.timeouts.extension_warmup}s for the extension to load")
        await asyncio.sleep(self.timeouts.extension_warmup)
        try:
            markers = await session.query_all(EXTENSION_MARKERS)
        except Exception as e:
            log.warning(f"Could not count extension elements: {e}")
            return 0
        log.info(f"Found {len(markers)} extension element(s) on the page")
        return len(markers)

    async def find_and_click_start(
        self,
        session: BrowserSession,
        corrector: PageModeCorrector,
        custom_selectors: Sequence[str],
        log: logging.LoggerAdapter,
    ) -> ClickOutcome:
        """
        Search for and click the start control over several attempts.

        Between failed attempts the top mode is re-checked on attempts where
        ``attempt % 3 == 0 or (attempt % 2 == 0 and attempt > 2)``. After a
        successful correction the next attempt starts without a pause. Not
        finding the control is not an error.
        """
        selectors: List[str] = list(custom_selectors) + [
            s for s in START_BUTTON_SELECTORS if s not in custom_selectors
        ]
        max_attempts = self.timeouts.button_attempts
        humanizer = session.humanizer

        for attempt in range(1, max_attempts + 1):
            log.info(f"Start button attempt {attempt}/{max_attempts} on {session.current_url[:80]}")
            await humanizer.delay(1500, 3000)
            await humanizer.move_mouse(session.page)

            try:
                selector, element = await session.find_first(selectors, self.timeouts.button_search)
                await session.click(element)
                log.info(f"Start button clicked ({selector}), extension takes over")
                await humanizer.delay(1000, 2000)
                return ClickOutcome(clicked=True, selector=selector, attempts=attempt)
            except SelectorNotFoundError:
                log.warning(f"Start button not found on attempt {attempt}")
            except ClickError as e:
                log.warning(f"Start button click failed on attempt {attempt}: {e}")
            except Exception as e:
                log.warning(f"Start button attempt {attempt} failed: {e}")

            if attempt >= max_attempts:
                break

            if attempt % 3 == 0 or (attempt % 2 == 0 and attempt > 2):
                log.info("Re-checking top mode between button attempts")
                if await corrector.recheck_top_mode() == CorrectionState.CORRECTED:
                    continue

            await asyncio.sleep(self.timeouts.button_retry_pause)
            await humanizer.natural_scroll(session.page)

        log.error(f"Start button not found after {max_attempts} attempts, continuing to monitoring")
        return ClickOutcome(clicked=False, selector=None, attempts=max_attempts)

    async def _take_screenshot(self, session: BrowserSession, log: logging.LoggerAdapter, error: bool = False) -> Optional[Dict[str, str]]:
        try:
            if session.page.is_closed() and session.pages:
                session.adopt(session.pages[-1])
            data = await session.screenshot(full_page=True)
            return self.artifacts.save_screenshot(data, error=error)
        except (BrowserError, OSError) as e:
            log.warning(f"Screenshot failed: {e}")
            return None

    async def _click_post_completion(self, session: BrowserSession, log: logging.LoggerAdapter) -> bool:
        try:
            _, element = await session.find_first([POST_COMPLETION_SELECTOR], self.timeouts.post_completion)
            await session.click(element)
        except (SelectorNotFoundError, ClickError) as e:
            log.info(f"Post-completion control not clicked: {e}")
            return False
        except Exception as e:
            log.warning(f"Post-completion click failed: {e}")
            return False
        log.info("Post-completion control clicked")
        await asyncio.sleep(self.timeouts.post_completion)
        return True

    async def collect_artifacts(
        self,
        session: BrowserSession,
        watch: WatchResult,
        log: logging.LoggerAdapter,
    ) -> Dict[str, Any]:
        """Screenshot, post-completion click, downloads and intercepted API data."""
        screenshot = await self._take_screenshot(session, log)
        post_clicked = await self._click_post_completion(session, log) if watch.completed else False

        events = await session.drain_events()
        downloads = [e for e in events if isinstance(e, DownloadEvent)]
        new_tabs = [e for e in events if isinstance(e, NewTabEvent)]
        saved = [d for d in downloads if d.saved]

        api_data = summarize_intercepted(session.intercepted)
        gbp_data = extract_gbp_data(session.intercepted)
        self.last_api_data = {"api_data": api_data, "gbp_check_data": gbp_data}

        log.info(
            f"Artifacts: screenshot={'yes' if screenshot else 'no'}, downloads={len(saved)}, "
            f"intercepted={len(session.intercepted)}, new tabs={len(new_tabs)}"
        )
        return {
            "screenshot": screenshot,
            "post_completion_click": post_clicked,
            "downloads": {"count": len(saved), "files": [d.to_dict() for d in downloads]},
            "new_tabs": len(new_tabs),
            "api_data": api_data,
            "gbp_check_data": gbp_data,
        }

    async def execute(self, job: Job) -> Dict[str, Any]:
        """
        Run ``job`` end to end and return its result payload.

        Raises:
            BrowserSetupError: The browser could not be opened
            NavigationError: The target and all fallbacks failed to load
        """
        log = job_logger(job.id)
        params = job.params
        timer = StepTimer()
        timer.start()
        session: Optional[BrowserSession] = None
        log.info(f"Starting automation for {job.url} (wait_time={params.wait_time}s, headless={params.headless})")

        try:
            async with time_phase(timer, "browser_setup"):
                session = await self._open_session(params.headless)

            try:
                async with time_phase(timer, "navigation"):
                    navigation = await self.navigate(session, job.url, log)
            except NavigationError:
                await self._take_screenshot(session, log, error=True)
                raise

            was_maps = is_maps_url(navigation.url)
            was_search = is_search_url(navigation.url)
            corrector = PageModeCorrector(session, self.timeouts)
            async with time_phase(timer, "page_mode_correction"):
                correction_state = await corrector.correct()
            log.info(f"Page mode after correction: {correction_state.value}")

            async with time_phase(timer, "extension_warmup"):
                extension_elements = await self.wait_for_extension(session, log)

            async with time_phase(timer, "start_button"):
                click = await self.find_and_click_start(session, corrector, params.button_selectors, log)

            watcher = CompletionWatcher(session, poll_interval=self.timeouts.poll_interval)
            async with time_phase(timer, "monitoring"):
                watch = await watcher.watch_until(params.wait_time)

            async with time_phase(timer, "artifacts"):
                collected = await self.collect_artifacts(session, watch, log)

            screenshot = collected["screenshot"] or {}
            result: Dict[str, Any] = {
                "success": True,
                "session_id": job.id,
                "name": params.name,
                "initial_url": job.url,
                "navigated_url": navigation.url,
                "final_url": session.current_url,
                "navigation_strategy": navigation.strategy,
                "alternative_url_used": navigation.alternative_used,
                "screenshot_url": screenshot.get("url"),
                "screenshot_path": screenshot.get("path"),
                "wait_time_used": params.wait_time,
                "browser_mode": "headless" if params.headless else "visible",
                "button_clicked": click.clicked,
                "button_selector": click.selector,
                "button_attempts": click.attempts,
                "extension_elements": extension_elements,
                "process_completed": watch.completed,
                "completion_method": watch.completion_method,
                "completion": watch.to_dict(),
                "maps_redirect": {
                    "was_maps_url": was_maps,
                    "is_search_url": was_search,
                    "redirect_performed": corrector.map_redirect_performed,
                },
                "gbp_mode_correction": corrector.to_dict(),
                "post_completion_click": collected["post_completion_click"],
                "downloads": collected["downloads"],
                "new_tabs": collected["new_tabs"],
                "api_data": collected["api_data"],
                "gbp_check_data": collected["gbp_check_data"],
                "webhook_sent": False,
            }
        finally:
            if session is not None:
                await session.close()

        result["timing"] = timer.get_timings().to_dict()

        if watch.completed and self.webhook is not None:
            result["webhook_sent"] = await self.webhook.notify(result)

        log.info(
            f"Automation finished: completed={watch.completed}, method={watch.completion_method}, "
            f"button_clicked={click.clicked}"
        )
        return result

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
Browser session for one automation job.

BrowserSession owns a Playwright browser, one context and every tab that
appears in that context. A session is opened fresh for each job and fully
closed afterwards; it is never reused.

Example:
    >>> session = await BrowserSession.open(config.browser, config.timeouts, store, headless=True)
    >>> try:
    ...     await session.navigate("https://www.google.com/search?q=padaria")
    ...     png = await session.screenshot()
    ... finally:
    ...     await session.close()
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from typing import Any, List, Optional, Sequence, Set, Tuple

from playwright.async_api import (
    Browser,
    BrowserContext,
    Download,
    ElementHandle,
    Page,
    Request,
    Route,
    async_playwright,
)
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from gbprunner.core.artifacts import ArtifactStore, download_filename, file_type_label
from gbprunner.core.events import DownloadEvent, InterceptedRequest, NewTabEvent, SessionEvent
from gbprunner.core.humanize import EXTRA_HTTP_HEADERS, INIT_SCRIPT, Humanizer, launch_args
from gbprunner.exceptions import (
    BrowserError,
    BrowserSetupError,
    CleanupError,
    ClickError,
    NavigationError,
    SelectorNotFoundError,
)
from gbprunner.service.config import BrowserConfig, TimeoutConfig
from gbprunner.utils.logger import logger

HEALTHCHECK_ROUTE = "**/api/healthcheck/external/**"
GBPCHECK_API_ROUTE = "**/api.gbpcheck.com/**"


def classify_navigation_error(error: BaseException) -> str:
    """Map a Playwright navigation failure to a NavigationError kind."""
    message = str(error)
    if isinstance(error, PlaywrightTimeoutError) or "Timeout" in message:
        return "timeout"
    if "ERR_NAME_NOT_RESOLVED" in message:
        return "dns"
    if "ERR_CONNECTION_REFUSED" in message:
        return "connection_refused"
    if "net::ERR" in message:
        return "network"
    return "other"


class BrowserSession:
    """
    A single-job browser with an explicit set of owned tabs.

    Attributes:
        headless: Whether the browser window is hidden
        owned_pages: Every tab this session has tracked, including tabs
            opened by in-page actions
        intercepted: API requests captured by the interception routes
    """

    def __init__(
        self,
        config: BrowserConfig,
        timeouts: TimeoutConfig,
        artifacts: ArtifactStore,
        headless: bool = False,
        humanizer: Optional[Humanizer] = None,
    ) -> None:
        self.config = config
        self.timeouts = timeouts
        self.artifacts = artifacts
        self.headless = headless
        self.humanizer = humanizer or Humanizer(enabled=config.humanize)
        self.owned_pages: List[Page] = []
        self.intercepted: List[InterceptedRequest] = []
        self._playwright: Any = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._events: List[SessionEvent] = []
        self._download_tasks: Set["asyncio.Task[None]"] = set()
        self._page_waiters: List["asyncio.Future[Page]"] = []
        self._temp_profile: Optional[str] = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        config: BrowserConfig,
        timeouts: TimeoutConfig,
        artifacts: ArtifactStore,
        headless: bool = False,
    ) -> "BrowserSession":
        session = cls(config, timeouts, artifacts, headless=headless)
        await session.start()
        return session

    async def start(self) -> None:
        """
        Launch the browser, create the context and the first page.

        With ``extension_path`` configured, a persistent context is used so
        the unpacked extension loads. Anything opened before a failure is
        closed again.

        Raises:
            BrowserSetupError: If any launch step fails
        """
        try:
            logger.info(f"Starting {self.config.browser_type} browser (headless={self.headless})")
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.config.browser_type, None)
            if launcher is None:
                raise BrowserSetupError(f"Unsupported browser type: {self.config.browser_type}")

            context_options = {
                "viewport": {"width": self.config.viewport_width, "height": self.config.viewport_height},
                "user_agent": self.config.user_agent,
                "locale": self.config.locale,
                "timezone_id": self.config.timezone_id,
                "accept_downloads": True,
                "extra_http_headers": EXTRA_HTTP_HEADERS,
            }
            args = launch_args(self.config.extension_path) if self.config.browser_type == "chromium" else []

            if self.config.extension_path:
                user_data_dir = self.config.user_data_dir or self._make_temp_profile()
                self._context = await launcher.launch_persistent_context(
                    user_data_dir,
                    headless=self.headless,
                    args=args,
                    ignore_default_args=["--enable-automation", "--disable-extensions"],
                    **context_options,
                )
                self._browser = self._context.browser
            else:
                self._browser = await launcher.launch(headless=self.headless, args=args)
                self._context = await self._browser.new_context(**context_options)

            await self._context.add_init_script(INIT_SCRIPT)
            await self._context.route(HEALTHCHECK_ROUTE, self._intercept_healthcheck)
            await self._context.route(GBPCHECK_API_ROUTE, self._intercept_gbpcheck_api)

            existing = [p for p in self._context.pages if not p.is_closed()]
            self._page = existing[0] if existing else await self._context.new_page()
            self._track(self._page)
            self._context.on("page", self._on_new_page)

            logger.info("Browser started successfully")
        except BrowserSetupError:
            await self.close()
            raise
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.close()
            raise BrowserSetupError(f"Failed to start browser: {e}") from e

    def _make_temp_profile(self) -> str:
        self._temp_profile = tempfile.mkdtemp(prefix="gbprunner-profile-")
        return self._temp_profile

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserError("Browser not started")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise BrowserError("Browser not started")
        return self._context

    @property
    def current_url(self) -> str:
        return self._page.url if self._page is not None else ""

    @property
    def pages(self) -> List[Page]:
        """Open tabs in the context, oldest first."""
        if self._context is None:
            return []
        return [p for p in self._context.pages if not p.is_closed()]

    @property
    def closed(self) -> bool:
        return self._closed

    def _track(self, page: Page) -> None:
        if page not in self.owned_pages:
            self.owned_pages.append(page)
            page.on("download", self._on_download)

    def adopt(self, page: Page) -> None:
        """Make ``page`` the tracked page and add it to the owned set."""
        self._track(page)
        self._page = page

    # Playwright callbacks only record; consumers read them via drain_events().

    def _on_new_page(self, page: Page) -> None:
        self._track(page)
        self._events.append(NewTabEvent(url=page.url, tab_count=len(self.pages)))
        logger.info(f"New tab opened: {page.url} ({len(self.pages)} open)")
        for waiter in self._page_waiters:
            if not waiter.done():
                waiter.set_result(page)

    def _on_download(self, download: Download) -> None:
        task = asyncio.ensure_future(self._save_download(download))
        self._download_tasks.add(task)
        task.add_done_callback(self._download_tasks.discard)

    async def _save_download(self, download: Download) -> None:
        filename = download_filename(download.suggested_filename, download.url)
        logger.info(f"Download started: {filename}")
        try:
            path = self.artifacts.download_path(filename)
            await download.save_as(path)
            size = path.stat().st_size if path.exists() else None
            self._events.append(DownloadEvent(
                filename=path.name,
                url=download.url,
                path=str(path),
                size=size,
                file_type=file_type_label(path.name),
            ))
            logger.info(f"Download saved: {path} ({size} bytes)")
        except Exception as e:
            logger.error(f"Download of {filename} failed: {e}")
            self._events.append(DownloadEvent(filename=filename, url=download.url, error=str(e)))

    async def _intercept_healthcheck(self, route: Route, request: Request) -> None:
        record = InterceptedRequest.from_request(request.url, request.method, request.headers, request.post_data)
        self.intercepted.append(record)
        logger.info(f"Intercepted {request.method} {request.url[:100]} ({len(self.intercepted)} total)")
        await route.continue_()

    async def _intercept_gbpcheck_api(self, route: Route, request: Request) -> None:
        post_data = request.post_data
        if post_data and "healthcheck" in request.url:
            headers = {"content-type": "application/json", **request.headers}
            self.intercepted.append(
                InterceptedRequest.from_request(request.url, request.method, headers, post_data)
            )
            logger.info(f"Intercepted GBP Check API {request.method} {request.url[:80]}")
        await route.continue_()

    async def drain_events(self) -> List[SessionEvent]:
        """Wait for in-flight downloads, then return and clear buffered events."""
        if self._download_tasks:
            await asyncio.gather(*list(self._download_tasks), return_exceptions=True)
        events, self._events = self._events, []
        return events

    async def navigate(self, url: str) -> str:
        """
        Navigate using the strategy ladder.

        Each ``wait_until`` condition is tried in order with its own timeout;
        the first success wins.

        Returns:
            The ``wait_until`` strategy that succeeded

        Raises:
            NavigationError: With the last Playwright error chained, after
                every strategy failed
        """
        ladder = self.timeouts.navigation_ladder
        last_error: Optional[BaseException] = None

        for index, strategy in enumerate(ladder):
            try:
                logger.info(f"Navigating to {url[:80]} (wait_until={strategy.wait_until}, timeout={strategy.timeout}s)")
                await self.page.goto(url, wait_until=strategy.wait_until, timeout=strategy.timeout * 1000)
                logger.info(f"Navigation succeeded with {strategy.wait_until}: {self.current_url}")
                return strategy.wait_until
            except Exception as e:
                last_error = e
                logger.warning(f"Navigation with {strategy.wait_until} failed: {e}")
                if index < len(ladder) - 1 and self.timeouts.strategy_pause:
                    await asyncio.sleep(self.timeouts.strategy_pause)

        kind = classify_navigation_error(last_error) if last_error else "other"
        raise NavigationError(
            f"Failed to navigate to {url} after {len(ladder)} strategies: {last_error}",
            url=url,
            kind=kind,
        ) from last_error

    async def wait_for_selector(self, selector: str, timeout: float, state: str = "visible") -> ElementHandle:
        try:
            element = await self.page.wait_for_selector(selector, timeout=timeout * 1000, state=state)
        except Exception as e:
            raise SelectorNotFoundError([selector], timeout) from e
        if element is None:
            raise SelectorNotFoundError([selector], timeout)
        return element

    async def find_first(self, selectors: Sequence[str], timeout: float) -> Tuple[str, ElementHandle]:
        """
        Return the first selector in priority order that resolves to a visible element.

        Raises:
            SelectorNotFoundError: When no selector matched
        """
        for selector in selectors:
            try:
                element = await self.wait_for_selector(selector, timeout)
            except SelectorNotFoundError:
                logger.debug(f"Selector not found: {selector}")
                continue
            try:
                visible = await element.is_visible()
            except Exception as e:
                logger.debug(f"Selector {selector} matched a detached element: {e}")
                continue
            if visible:
                return selector, element
        raise SelectorNotFoundError(list(selectors), timeout)

    async def query_all(self, selector: str, within: Optional[str] = None) -> List[ElementHandle]:
        """All matches of ``selector``, scoped to the first ``within`` element when given."""
        if within is None:
            return await self.page.query_selector_all(selector)
        root = await self.page.query_selector(within)
        if root is None:
            return []
        return await root.query_selector_all(selector)

    async def click(self, element: ElementHandle) -> None:
        await self.humanizer.before_click(element)
        try:
            await element.click()
        except Exception as e:
            raise ClickError(f"Click failed: {e}") from e

    async def click_and_wait_for_navigation(self, element: ElementHandle, timeout: float) -> bool:
        """
        Click and wait for the tracked page to navigate (same tab).

        Returns:
            False if no navigation finished within ``timeout``
        """
        await self.humanizer.before_click(element)
        try:
            async with self.page.expect_navigation(wait_until="domcontentloaded", timeout=timeout * 1000):
                await element.click()
            return True
        except PlaywrightTimeoutError:
            logger.warning(f"No navigation within {timeout}s after click")
            return False
        except Exception as e:
            raise ClickError(f"Click failed: {e}") from e

    async def wait_for_new_page(self, known_count: int, timeout: float) -> Optional[Page]:
        """
        Wait for the context's ``page`` event; return the newest tab or None.

        A tab opened since ``known_count`` was taken is returned at once.
        """
        pages = self.pages
        if len(pages) > known_count:
            return pages[-1]
        waiter: "asyncio.Future[Page]" = asyncio.get_running_loop().create_future()
        self._page_waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._page_waiters.remove(waiter)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def screenshot(self, full_page: bool = True) -> bytes:
        try:
            return await self.page.screenshot(full_page=full_page, type="png")
        except Exception as e:
            raise BrowserError(f"Failed to take screenshot: {e}") from e

    async def _close_resource(self, name: str, closer: Any) -> None:
        try:
            await closer()
        except Exception as e:
            error = CleanupError(name, e)
            logger.warning(error.message)

    async def close(self) -> None:
        """
        Close every tab, the context, the browser and Playwright.

        Safe to call more than once. Each resource is closed independently
        and failures are logged, never raised.
        """
        if self._closed:
            return
        self._closed = True

        for task in list(self._download_tasks):
            task.cancel()

        pages = []
        if self._page is not None:
            pages.append(self._page)
        pages.extend(p for p in self.owned_pages if p not in pages)
        for index, page in enumerate(pages):
            if not page.is_closed():
                await self._close_resource(f"page {index}", page.close)

        if self._context is not None:
            await self._close_resource("context", self._context.close)
        if self._browser is not None:
            await self._close_resource("browser", self._browser.close)
        if self._playwright is not None:
            await self._close_resource("playwright", self._playwright.stop)

        if self._temp_profile:
            shutil.rmtree(self._temp_profile, ignore_errors=True)

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        logger.info("Browser session closed")

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

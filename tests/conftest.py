# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""
Shared test fixtures for the gbprunner test suite.

This module provides common fixtures used across all test categories:
- Fake Playwright page, context, browser and element objects
- A fake ``async_playwright`` patched into the browser session module
- Zero-delay configuration for fast orchestration tests
- A virtual clock for poll loops
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from gbprunner.core.artifacts import ArtifactStore
from gbprunner.service.config import (
    BrowserConfig,
    NavigationStrategy,
    QueueConfig,
    ServiceConfig,
    StorageConfig,
    TimeoutConfig,
)


# ==================== Environment Setup ====================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ.setdefault("GBPRUNNER_LOG_LEVEL", "warning")
    yield


# ==================== Fake Playwright Objects ====================

class FakeElement:
    """Fake Playwright element handle."""

    def __init__(
        self,
        visible: bool = True,
        on_click: Optional[Callable[[], None]] = None,
        children: Optional[List["FakeElement"]] = None,
        error: Optional[Exception] = None,
        visible_error: Optional[Exception] = None,
    ):
        self.visible = visible
        self.on_click = on_click
        self.children = children or []
        self.error = error
        self.visible_error = visible_error
        self.clicks = 0

    async def is_visible(self) -> bool:
        if self.visible_error is not None:
            raise self.visible_error
        return self.visible

    async def click(self) -> None:
        self.clicks += 1
        if self.error is not None:
            raise self.error
        if self.on_click is not None:
            self.on_click()

    async def query_selector_all(self, selector: str) -> List["FakeElement"]:
        return list(self.children)

    async def scroll_into_view_if_needed(self) -> None:
        pass

    async def hover(self) -> None:
        pass


class FakePage:
    """
    Fake Playwright page.

    ``goto_errors`` is consumed one entry per ``goto`` call (None means
    success). ``evaluate_results`` maps a script to its return value and
    ``evaluate_errors`` to the exception it raises.
    ``next_url`` is where the page goes when a click is awaited inside
    ``expect_navigation``; None makes the wait time out.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.closed = False
        self.goto_calls: List[Dict[str, Any]] = []
        self.goto_errors: List[Optional[Exception]] = []
        self.selectors: Dict[str, FakeElement] = {}
        self.query_results: Dict[str, List[FakeElement]] = {}
        self.evaluate_results: Dict[str, Any] = {}
        self.evaluate_calls: List[Any] = []
        self.evaluate_errors: Dict[str, Exception] = {}
        self.next_url: Optional[str] = None
        self.listeners: Dict[str, List[Callable]] = {}
        self.screenshot_data = b"\x89PNG fake"
        self.close_error: Optional[Exception] = None

    def is_closed(self) -> bool:
        return self.closed

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if self.goto_errors:
            error = self.goto_errors.pop(0)
            if error is not None:
                raise error
        self.url = url

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None, state: str = "visible"):
        element = self.selectors.get(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return element

    async def query_selector_all(self, selector: str) -> List[FakeElement]:
        return list(self.query_results.get(selector, []))

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self.selectors.get(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluate_calls.append((script, arg))
        if script in self.evaluate_errors:
            raise self.evaluate_errors[script]
        return self.evaluate_results.get(script)

    @asynccontextmanager
    async def _navigation(self):
        yield
        if self.next_url is None:
            raise PlaywrightTimeoutError("Timeout exceeded while waiting for navigation")
        self.url = self.next_url

    def expect_navigation(self, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        return self._navigation()

    async def bring_to_front(self) -> None:
        pass

    async def wait_for_load_state(self, state: str = "load") -> None:
        pass

    async def screenshot(self, full_page: bool = True, type: str = "png") -> bytes:
        return self.screenshot_data

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeContext:
    """Fake browser context that fires ``page`` listeners for new tabs."""

    def __init__(self):
        self.pages: List[FakePage] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.routes: List[str] = []
        self.init_scripts: List[str] = []
        self.closed = False
        self.browser = None

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    async def new_page(self) -> FakePage:
        page = FakePage()
        self.pages.append(page)
        return page

    def open_tab(self, url: str) -> FakePage:
        """Simulate an in-page action opening a new tab."""
        page = FakePage(url)
        self.pages.append(page)
        for handler in self.listeners.get("page", []):
            handler(page)
        return page

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def route(self, pattern: str, handler: Callable) -> None:
        self.routes.append(pattern)

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, context: FakeContext):
        self.context = context
        self.closed = False

    async def new_context(self, **kwargs: Any) -> FakeContext:
        self.context.options = kwargs
        return self.context

    async def close(self) -> None:
        self.closed = True


class FakePlaywright:
    def __init__(self, context: FakeContext):
        self.browser = FakeBrowser(context)
        self.launch_kwargs: Dict[str, Any] = {}
        self.stopped = False
        self.chromium = MagicMock()
        self.chromium.launch = self._launch

    async def _launch(self, **kwargs: Any) -> FakeBrowser:
        self.launch_kwargs = kwargs
        return self.browser

    async def start(self) -> "FakePlaywright":
        return self

    async def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def fake_context() -> FakeContext:
    return FakeContext()


@pytest.fixture
def fake_playwright(fake_context):
    """Patch ``async_playwright`` in the browser module with a fake driver."""
    driver = FakePlaywright(fake_context)
    with patch("gbprunner.core.browser.async_playwright", return_value=driver):
        yield driver


# ==================== Configuration ====================

@pytest.fixture
def zero_timeouts() -> TimeoutConfig:
    """Timeouts with every fixed delay set to zero."""
    return TimeoutConfig(
        navigation_ladder=[
            NavigationStrategy(wait_until="domcontentloaded", timeout=1),
            NavigationStrategy(wait_until="load", timeout=1),
            NavigationStrategy(wait_until="networkidle", timeout=1),
            NavigationStrategy(wait_until="commit", timeout=1),
        ],
        strategy_pause=0,
        button_search=0,
        maps_settle=0,
        maps_button=0,
        new_tab_wait=0,
        top_mode_check_delay=0,
        top_mode_navigation=1,
        extension_warmup=0,
        poll_interval=0,
        button_attempts=5,
        button_retry_pause=0,
        post_completion=0,
    )


@pytest.fixture
def artifact_store(tmp_path) -> ArtifactStore:
    return ArtifactStore(str(tmp_path / "screenshots"), str(tmp_path / "downloads"))


@pytest.fixture
def service_config(tmp_path, zero_timeouts) -> ServiceConfig:
    return ServiceConfig(
        browser=BrowserConfig(humanize=False),
        timeouts=zero_timeouts,
        queue=QueueConfig(max_size=10),
        storage=StorageConfig(
            screenshots_dir=str(tmp_path / "screenshots"),
            downloads_dir=str(tmp_path / "downloads"),
        ),
    )


# ==================== Virtual Time ====================

class VirtualClock:
    """
    Monotonic clock whose ``sleep`` advances time instantly.

    ``at(t, fn)`` runs ``fn`` the first time the clock reaches ``t``.
    """

    def __init__(self):
        self.now = 0.0
        self._hooks: List[Any] = []

    def __call__(self) -> float:
        return self.now

    def at(self, when: float, fn: Callable[[], None]) -> None:
        self._hooks.append((when, fn))

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        for hook in list(self._hooks):
            when, fn = hook
            if self.now >= when:
                self._hooks.remove(hook)
                fn()


@pytest.fixture
def virtual_clock() -> VirtualClock:
    return VirtualClock()


# ==================== Markers ====================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )

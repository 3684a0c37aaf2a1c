# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for BrowserSession: launch, navigation ladder, tabs, events and close."""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from gbprunner.core.browser import (
    GBPCHECK_API_ROUTE,
    HEALTHCHECK_ROUTE,
    BrowserSession,
    classify_navigation_error,
)
from gbprunner.core.events import DownloadEvent, NewTabEvent
from gbprunner.exceptions import BrowserSetupError, ClickError, NavigationError, SelectorNotFoundError

from conftest import FakeElement


async def open_session(service_config, artifact_store):
    return await BrowserSession.open(
        service_config.browser, service_config.timeouts, artifact_store, headless=True
    )


class TestClassifyNavigationError:
    @pytest.mark.parametrize(
        "message,kind",
        [
            ("Timeout 30000ms exceeded", "timeout"),
            ("net::ERR_NAME_NOT_RESOLVED at https://x", "dns"),
            ("net::ERR_CONNECTION_REFUSED at https://x", "connection_refused"),
            ("net::ERR_ABORTED at https://x", "network"),
            ("something else", "other"),
        ],
    )
    def test_kinds(self, message, kind):
        assert classify_navigation_error(Exception(message)) == kind


class TestStart:
    @pytest.mark.asyncio
    async def test_start_configures_context(self, fake_playwright, fake_context, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        assert session.page is fake_context.pages[0]
        assert session.owned_pages == [session.page]
        assert fake_context.routes == [HEALTHCHECK_ROUTE, GBPCHECK_API_ROUTE]
        assert len(fake_context.init_scripts) == 1
        assert fake_context.options["locale"] == "pt-BR"
        assert fake_context.options["accept_downloads"] is True
        assert fake_playwright.launch_kwargs["headless"] is True
        await session.close()

    @pytest.mark.asyncio
    async def test_launch_failure_raises_setup_error(self, fake_playwright, service_config, artifact_store):
        async def broken_launch(**kwargs):
            raise RuntimeError("Executable doesn't exist")

        fake_playwright.chromium.launch = broken_launch

        with pytest.raises(BrowserSetupError):
            await open_session(service_config, artifact_store)
        assert fake_playwright.stopped is True


class TestNavigate:
    @pytest.mark.asyncio
    async def test_first_strategy_wins(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        strategy = await session.navigate("https://www.google.com/search?q=x")

        assert strategy == "domcontentloaded"
        assert session.current_url == "https://www.google.com/search?q=x"
        assert len(session.page.goto_calls) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_ladder_falls_through_to_later_strategy(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        session.page.goto_errors = [Exception("Timeout 1000ms exceeded"), Exception("Timeout 1000ms exceeded")]

        strategy = await session.navigate("https://maps.google.com/maps/place/X")

        assert strategy == "networkidle"
        assert [c["wait_until"] for c in session.page.goto_calls] == ["domcontentloaded", "load", "networkidle"]
        assert session.page.goto_calls[0]["timeout"] == 1000
        await session.close()

    @pytest.mark.asyncio
    async def test_exhausted_ladder_raises_with_kind(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        session.page.goto_errors = [Exception("net::ERR_NAME_NOT_RESOLVED")] * 4

        with pytest.raises(NavigationError) as exc_info:
            await session.navigate("https://nope.invalid")

        assert exc_info.value.kind == "dns"
        assert exc_info.value.url == "https://nope.invalid"
        assert len(session.page.goto_calls) == 4
        await session.close()


class TestSelectorsAndClicks:
    @pytest.mark.asyncio
    async def test_find_first_respects_priority_and_visibility(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        hidden = FakeElement(visible=False)
        shown = FakeElement()
        session.page.selectors.update({".a": hidden, ".b": shown, ".c": FakeElement()})

        selector, element = await session.find_first([".missing", ".a", ".b", ".c"], timeout=0)

        assert selector == ".b"
        assert element is shown
        await session.close()

    @pytest.mark.asyncio
    async def test_find_first_skips_detached_element(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        detached = FakeElement(visible_error=PlaywrightError("Element is not attached to the DOM"))
        shown = FakeElement()
        session.page.selectors.update({".a": detached, ".b": shown})

        selector, element = await session.find_first([".a", ".b"], timeout=0)

        assert selector == ".b"
        assert element is shown
        await session.close()

    @pytest.mark.asyncio
    async def test_find_first_detached_only_is_not_found(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        session.page.selectors[".a"] = FakeElement(visible_error=PlaywrightError("Element is not attached to the DOM"))

        with pytest.raises(SelectorNotFoundError):
            await session.find_first([".a"], timeout=0)
        await session.close()

    @pytest.mark.asyncio
    async def test_find_first_raises_when_nothing_matches(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        with pytest.raises(SelectorNotFoundError) as exc_info:
            await session.find_first([".x", ".y"], timeout=0)

        assert exc_info.value.selectors == [".x", ".y"]
        await session.close()

    @pytest.mark.asyncio
    async def test_click_error_is_wrapped(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        with pytest.raises(ClickError):
            await session.click(FakeElement(error=RuntimeError("element detached")))
        await session.close()

    @pytest.mark.asyncio
    async def test_click_and_wait_without_navigation(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        element = FakeElement()

        assert await session.click_and_wait_for_navigation(element, timeout=1) is False
        assert element.clicks == 1

        session.page.next_url = "https://www.google.com/search?q=y"
        assert await session.click_and_wait_for_navigation(element, timeout=1) is True
        assert session.current_url == "https://www.google.com/search?q=y"
        await session.close()


class TestTabsAndEvents:
    @pytest.mark.asyncio
    async def test_new_tab_is_owned_and_buffered(self, fake_playwright, fake_context, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        tab = fake_context.open_tab("https://local.google.com/place?id=1")

        assert tab in session.owned_pages
        assert "download" in tab.listeners
        events = await session.drain_events()
        assert len(events) == 1
        assert isinstance(events[0], NewTabEvent)
        assert events[0].tab_count == 2
        assert await session.drain_events() == []
        await session.close()

    @pytest.mark.asyncio
    async def test_download_saved_under_downloads_dir(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)

        class FakeDownload:
            suggested_filename = "relatorio.pdf"
            url = "https://app.gbpcheck.com/files/relatorio.pdf"

            async def save_as(self, path):
                path.write_bytes(b"%PDF-1.4")

        session.page.listeners["download"][0](FakeDownload())
        events = await session.drain_events()

        assert len(events) == 1
        download = events[0]
        assert isinstance(download, DownloadEvent)
        assert download.saved
        assert download.filename == "relatorio.pdf"
        assert download.size == 8
        assert download.file_type == "PDF Document"
        assert artifact_store.list_downloads()[0]["filename"] == "relatorio.pdf"
        await session.close()

    @pytest.mark.asyncio
    async def test_wait_for_new_page_times_out(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        assert await session.wait_for_new_page(known_count=1, timeout=0) is None
        await session.close()

    @pytest.mark.asyncio
    async def test_wait_for_new_page_resolves_on_page_event(
        self, fake_playwright, fake_context, service_config, artifact_store
    ):
        session = await open_session(service_config, artifact_store)
        waiting = asyncio.create_task(session.wait_for_new_page(known_count=1, timeout=5))
        await asyncio.sleep(0)

        tab = fake_context.open_tab("https://local.google.com/place?id=1")

        assert await waiting is tab
        assert session._page_waiters == []
        await session.close()

    @pytest.mark.asyncio
    async def test_wait_for_new_page_returns_tab_opened_before_waiting(
        self, fake_playwright, fake_context, service_config, artifact_store
    ):
        session = await open_session(service_config, artifact_store)
        tab = fake_context.open_tab("https://local.google.com/place?id=1")

        assert await session.wait_for_new_page(known_count=1, timeout=0) is tab
        await session.close()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_closes_everything(
        self, fake_playwright, fake_context, service_config, artifact_store
    ):
        session = await open_session(service_config, artifact_store)
        first = session.page
        second = fake_context.open_tab("https://example.com")

        await session.close()
        await session.close()

        assert first.closed and second.closed
        assert fake_context.closed
        assert fake_playwright.browser.closed
        assert fake_playwright.stopped
        assert session.closed
        assert session.current_url == ""

    @pytest.mark.asyncio
    async def test_close_failures_are_not_raised(self, fake_playwright, service_config, artifact_store):
        session = await open_session(service_config, artifact_store)
        session.page.close_error = RuntimeError("Target closed")

        await session.close()

        assert fake_playwright.stopped

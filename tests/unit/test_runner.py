# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for end-to-end job execution with a fake browser."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from gbprunner.core.browser import BrowserSession
from gbprunner.core.corrector import TOP_MODE_PROBE, CorrectionState
from gbprunner.core.patterns import ALTERNATIVE_URLS, EXTENSION_MARKERS, POST_COMPLETION_SELECTOR
from gbprunner.core.runner import AutomationRunner
from gbprunner.core.scheduler import Job, JobParams
from gbprunner.exceptions import BrowserSetupError, NavigationError
from gbprunner.utils.logger import job_logger

from conftest import FakeElement

SEARCH_URL = "https://www.google.com/search?q=padaria+central"
HEALTHCHECK_URL = "https://app.gbpcheck.com/extension/healthcheck?id=7"


@pytest.fixture
def sessions():
    return []


@pytest.fixture
def session_factory(fake_playwright, service_config, artifact_store, sessions):
    async def factory(headless):
        session = await BrowserSession.open(
            service_config.browser, service_config.timeouts, artifact_store, headless=headless
        )
        sessions.append(session)
        return session
    return factory


def completing_start_button(page):
    """A start button whose click makes the extension reach the healthcheck page."""
    return FakeElement(on_click=lambda: setattr(page, "url", HEALTHCHECK_URL))


class TestExecute:
    @pytest.mark.asyncio
    async def test_completed_run_builds_result_and_notifies(
        self, service_config, artifact_store, session_factory, sessions
    ):
        webhook = MagicMock()
        webhook.notify = AsyncMock(return_value=True)
        runner = AutomationRunner(service_config, artifact_store, session_factory=session_factory, webhook=webhook)

        job = Job(url=SEARCH_URL, params=JobParams(wait_time=30, headless=True, name="Ana"))

        async def prepare(headless):
            session = await session_factory(headless)
            session.page.selectors[".start-main-check-btn"] = completing_start_button(session.page)
            session.page.query_results[EXTENSION_MARKERS] = [FakeElement(), FakeElement()]
            return session

        runner._session_factory = prepare
        result = await runner.execute(job)

        assert result["success"] is True
        assert result["session_id"] == job.id
        assert result["name"] == "Ana"
        assert result["navigated_url"] == SEARCH_URL
        assert result["navigation_strategy"] == "domcontentloaded"
        assert result["button_clicked"] is True
        assert result["button_selector"] == ".start-main-check-btn"
        assert result["button_attempts"] == 1
        assert result["extension_elements"] == 2
        assert result["process_completed"] is True
        assert result["completion_method"] == "primary_pattern"
        assert result["final_url"] == HEALTHCHECK_URL
        assert result["browser_mode"] == "headless"
        assert result["maps_redirect"]["is_search_url"] is True
        assert result["screenshot_url"].startswith("/screenshots/screenshot-")
        assert result["webhook_sent"] is True
        assert set(result["timing"]["breakdown"]) >= {"browser_setup", "navigation", "monitoring"}
        webhook.notify.assert_awaited_once()
        assert sessions[0].closed

    @pytest.mark.asyncio
    async def test_timeout_run_skips_webhook(self, service_config, artifact_store, session_factory, sessions):
        webhook = MagicMock()
        webhook.notify = AsyncMock(return_value=True)
        runner = AutomationRunner(service_config, artifact_store, session_factory=session_factory, webhook=webhook)

        result = await runner.execute(Job(url=SEARCH_URL, params=JobParams(wait_time=0)))

        assert result["process_completed"] is False
        assert result["completion_method"] == "timeout"
        assert result["button_clicked"] is False
        assert result["button_attempts"] == 5
        assert result["webhook_sent"] is False
        webhook.notify.assert_not_awaited()
        assert sessions[0].closed

    @pytest.mark.asyncio
    async def test_navigation_failure_is_fatal_and_cleans_up(
        self, service_config, artifact_store, session_factory, sessions
    ):
        runner = AutomationRunner(service_config, artifact_store)

        async def failing(headless):
            session = await session_factory(headless)
            session.page.goto_errors = [Exception("net::ERR_CONNECTION_REFUSED")] * 4
            return session

        runner._session_factory = failing

        with pytest.raises(NavigationError) as exc_info:
            await runner.execute(Job(url="https://example.com/perfil", params=JobParams(wait_time=0)))

        assert exc_info.value.kind == "connection_refused"
        assert sessions[0].closed
        assert artifact_store.list_screenshots()[0]["filename"].startswith("error-screenshot-")

    @pytest.mark.asyncio
    async def test_browser_setup_failure_propagates(self, service_config, artifact_store):
        async def broken(headless):
            raise BrowserSetupError("Failed to start browser: no display")

        runner = AutomationRunner(service_config, artifact_store, session_factory=broken)

        with pytest.raises(BrowserSetupError):
            await runner.execute(Job(url=SEARCH_URL))

    @pytest.mark.asyncio
    async def test_intercepted_data_kept_for_api(self, service_config, artifact_store, session_factory):
        from gbprunner.core.events import InterceptedRequest

        async def with_traffic(headless):
            session = await session_factory(headless)
            session.intercepted.append(InterceptedRequest.from_request(
                "https://api.gbpcheck.com/healthcheck",
                "POST",
                {"content-type": "application/json"},
                '{"method": "health_check", "email": "ana@example.com", "reference_k": "rk1", "place_id": "p1"}',
            ))
            return session

        runner = AutomationRunner(service_config, artifact_store, session_factory=with_traffic)
        result = await runner.execute(Job(url=SEARCH_URL, params=JobParams(wait_time=0)))

        assert result["api_data"]["total_requests"] == 1
        assert result["gbp_check_data"]["user_info"]["email"] == "ana@example.com"
        assert runner.last_api_data["gbp_check_data"]["place_data"] == {"reference_key": "rk1", "place_id": "p1"}


class TestNavigate:
    @pytest.mark.asyncio
    async def test_share_link_falls_back_to_alternatives(self, service_config, artifact_store, session_factory):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        session.page.goto_errors = [Exception("Timeout 1000ms exceeded")] * 4

        outcome = await runner.navigate(session, "https://share.google/abc123", job_logger("t"))

        assert outcome.alternative_used is True
        assert outcome.url == ALTERNATIVE_URLS[0]
        await session.close()

    @pytest.mark.asyncio
    async def test_plain_url_does_not_fall_back(self, service_config, artifact_store, session_factory):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        session.page.goto_errors = [Exception("Timeout 1000ms exceeded")] * 4

        with pytest.raises(NavigationError):
            await runner.navigate(session, "https://example.com/x", job_logger("t"))

        assert len(session.page.goto_calls) == 4
        await session.close()


class TestFindAndClickStart:
    @pytest.mark.asyncio
    async def test_rechecks_top_mode_between_attempts(self, service_config, artifact_store, session_factory):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        corrector = MagicMock()
        corrector.recheck_top_mode = AsyncMock(return_value=CorrectionState.NOMINAL)

        outcome = await runner.find_and_click_start(session, corrector, [], job_logger("t"))

        assert outcome.clicked is False
        assert outcome.attempts == 5
        # attempts 3 and 4 re-check; the last attempt does not
        assert corrector.recheck_top_mode.await_count == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_custom_selectors_tried_first(self, service_config, artifact_store, session_factory):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        custom = FakeElement()
        default = FakeElement()
        session.page.selectors["#my-start"] = custom
        session.page.selectors[".start-main-check-btn"] = default

        outcome = await runner.find_and_click_start(session, MagicMock(), ["#my-start"], job_logger("t"))

        assert outcome.selector == "#my-start"
        assert custom.clicks == 1
        assert default.clicks == 0
        await session.close()


class TestPlaywrightErrorsAreNotFatal:
    @pytest.mark.asyncio
    async def test_correction_error_does_not_fail_job(self, service_config, artifact_store, session_factory):
        async def rerendering(headless):
            session = await session_factory(headless)
            session.page.evaluate_errors[TOP_MODE_PROBE] = PlaywrightError(
                "Execution context was destroyed, most likely because of a navigation"
            )
            session.page.selectors[".start-main-check-btn"] = completing_start_button(session.page)
            return session

        runner = AutomationRunner(service_config, artifact_store, session_factory=rerendering)
        result = await runner.execute(Job(url=SEARCH_URL, params=JobParams(wait_time=30)))

        assert result["process_completed"] is True
        correction = result["gbp_mode_correction"]
        assert correction["state"] == CorrectionState.FAILED.value
        assert correction["last_error"]["details"] == {"step": "top_mode", "failed_checks": ["error"]}
        assert "Execution context was destroyed" in correction["last_error"]["message"]

    @pytest.mark.asyncio
    async def test_detached_start_button_counts_as_failed_attempt(
        self, service_config, artifact_store, session_factory
    ):
        async def detached(headless):
            session = await session_factory(headless)
            session.page.selectors[".start-main-check-btn"] = FakeElement(
                visible_error=PlaywrightError("Element is not attached to the DOM")
            )
            return session

        runner = AutomationRunner(service_config, artifact_store, session_factory=detached)
        result = await runner.execute(Job(url="https://example.com/x", params=JobParams(wait_time=0)))

        assert result["button_clicked"] is False
        assert result["button_attempts"] == 5
        assert result["completion_method"] == "timeout"

    @pytest.mark.asyncio
    async def test_unexpected_error_in_attempt_moves_to_next(self, service_config, artifact_store, session_factory):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        button = FakeElement()
        session.find_first = AsyncMock(side_effect=[PlaywrightError("Target page crashed"), (".start-main-check-btn", button)])

        outcome = await runner.find_and_click_start(session, MagicMock(), [], job_logger("t"))

        assert outcome.clicked is True
        assert outcome.attempts == 2
        assert button.clicks == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_post_completion_error_keeps_completed_result(
        self, service_config, artifact_store, session_factory
    ):
        async def detached_dropdown(headless):
            session = await session_factory(headless)
            session.page.selectors[".start-main-check-btn"] = completing_start_button(session.page)
            session.page.selectors[POST_COMPLETION_SELECTOR] = FakeElement(
                visible_error=PlaywrightError("Element is not attached to the DOM")
            )
            return session

        runner = AutomationRunner(service_config, artifact_store, session_factory=detached_dropdown)
        result = await runner.execute(Job(url="https://example.com/x", params=JobParams(wait_time=30)))

        assert result["process_completed"] is True
        assert result["post_completion_click"] is False

    @pytest.mark.asyncio
    async def test_post_completion_unexpected_error_returns_false(
        self, service_config, artifact_store, session_factory
    ):
        runner = AutomationRunner(service_config, artifact_store)
        session = await session_factory(True)
        session.find_first = AsyncMock(side_effect=PlaywrightError("Target page crashed"))

        assert await runner._click_post_completion(session, job_logger("t")) is False
        await session.close()

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
Page mode correction.

Two page states break the extension flow: a Google Maps view (the
extension wants the search view) and the search "top mode", where the
business card is collapsed into a featured-results container. The
corrector detects either state and performs one corrective action per
call:

    UNKNOWN -> EVALUATING -> NEEDS_MAP_REDIRECT | NEEDS_TOP_MODE_FIX | NOMINAL
            -> CORRECTED | FAILED

A failed correction raises CorrectionFailure from the step methods;
``correct()`` and ``recheck_top_mode()`` record it and return FAILED so
the caller can retry at its next opportunity.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from gbprunner.core.browser import BrowserSession
from gbprunner.core.patterns import (
    BUSINESS_DETAIL_MARKERS,
    FEATURED_CONTAINER,
    GENERIC_HREF_HINTS,
    MAPS_TO_SEARCH_SELECTORS,
    PLACE_HREF_HINTS,
    REVIEWS_TEXT_HINTS,
    SEARCH_RESULT_MARKERS,
    PageKind,
    classify_url,
    is_search_url,
)
from gbprunner.exceptions import ClickError, CorrectionFailure, SelectorNotFoundError
from gbprunner.service.config import TimeoutConfig
from gbprunner.utils.logger import logger


class CorrectionState(str, Enum):
    UNKNOWN = "unknown"
    EVALUATING = "evaluating"
    NEEDS_MAP_REDIRECT = "needs_map_redirect"
    NEEDS_TOP_MODE_FIX = "needs_top_mode_fix"
    NOMINAL = "nominal"
    CORRECTED = "corrected"
    FAILED = "failed"


TOP_MODE_PROBE = """
(container) => {
    const root = document.querySelector(container);
    if (!root) {
        return { present: false, links: [] };
    }
    const links = Array.from(root.querySelectorAll('a[href]')).map((a, index) => ({
        index,
        href: a.href || '',
        text: (a.textContent || a.innerText || '').trim(),
    }));
    return { present: true, links };
}
"""

PAGE_CHECK = """
(args) => ({
    featured: !!document.querySelector(args.container),
    search: args.search.some((s) => !!document.querySelector(s)),
    business: args.business.some((s) => !!document.querySelector(s)),
})
"""


@dataclass
class LinkCandidate:
    """A link inside the featured container."""

    index: int
    href: str
    text: str

    @property
    def score(self) -> int:
        """3 for reviews text, 2 for a maps/place href, 1 for a generic href, 0 otherwise."""
        text = self.text.lower()
        href = self.href.lower()
        if any(hint in text for hint in REVIEWS_TEXT_HINTS):
            return 3
        if any(hint in href for hint in PLACE_HREF_HINTS):
            return 2
        if any(hint in href for hint in GENERIC_HREF_HINTS):
            return 1
        return 0


def rank_candidates(links: List[Dict[str, Any]]) -> List[LinkCandidate]:
    """Drop links without an href or any hint, best first; ties keep document order."""
    candidates = [
        LinkCandidate(index=int(link.get("index", i)), href=link.get("href") or "", text=link.get("text") or "")
        for i, link in enumerate(links)
    ]
    ranked = [c for c in candidates if c.href and c.score > 0]
    return sorted(ranked, key=lambda c: -c.score)


class PageModeCorrector:
    """
    Detects and corrects the map view and the featured-result top mode.

    Attributes:
        state: Current state of the correction machine
        transitions: Every state entered, in order
        came_from_maps: Set once a map redirect adopted the search tab
        map_redirect_performed: Whether a redirect ever succeeded
        top_mode_corrected: Whether a top-mode fix ever succeeded
        last_error: The most recent CorrectionFailure, if any
    """

    def __init__(self, session: BrowserSession, timeouts: TimeoutConfig) -> None:
        self.session = session
        self.timeouts = timeouts
        self.state = CorrectionState.UNKNOWN
        self.transitions: List[CorrectionState] = [CorrectionState.UNKNOWN]
        self.came_from_maps = False
        self.map_redirect_performed = False
        self.top_mode_corrected = False
        self.last_error: Optional[CorrectionFailure] = None

    def _enter(self, state: CorrectionState) -> CorrectionState:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Page mode state: {state.value}")
        return state

    def _fail(self, error: CorrectionFailure) -> CorrectionState:
        self.last_error = error
        logger.warning(f"Correction failed at {error.step}: {error.message} {error.failed_checks}")
        return self._enter(CorrectionState.FAILED)

    def evaluate(self) -> CorrectionState:
        """Classify the tracked page by URL."""
        self._enter(CorrectionState.EVALUATING)
        kind = classify_url(self.session.current_url)
        if kind == PageKind.MAP:
            return self._enter(CorrectionState.NEEDS_MAP_REDIRECT)
        if kind == PageKind.SEARCH:
            return self._enter(CorrectionState.NEEDS_TOP_MODE_FIX)
        return self._enter(CorrectionState.NOMINAL)

    async def redirect_from_map(self) -> None:
        """
        Click the extension's "Ver na Pesquisa" control and adopt the tab it opens.

        Raises:
            CorrectionFailure: No control found, the click failed, or no new
                tab appeared in time
        """
        url = self.session.current_url
        logger.info(f"Map view detected, waiting {self.timeouts.maps_settle}s before redirect: {url[:80]}")
        await asyncio.sleep(self.timeouts.maps_settle)

        try:
            selector, button = await self.session.find_first(MAPS_TO_SEARCH_SELECTORS, self.timeouts.maps_button)
        except SelectorNotFoundError as e:
            raise CorrectionFailure(
                "Map-to-search control not found", step="map_redirect", failed_checks=["control_not_found"]
            ) from e

        known_tabs = len(self.session.pages)
        logger.info(f"Clicking map-to-search control ({selector})")
        try:
            await self.session.click(button)
        except ClickError as e:
            raise CorrectionFailure(str(e), step="map_redirect", failed_checks=["click_failed"]) from e

        new_page = await self.session.wait_for_new_page(known_tabs, self.timeouts.new_tab_wait)
        if new_page is None:
            raise CorrectionFailure(
                "No new tab opened after map-to-search click", step="map_redirect", failed_checks=["no_new_tab"]
            )

        self.session.adopt(new_page)
        try:
            await new_page.bring_to_front()
            await new_page.wait_for_load_state("domcontentloaded")
        except Exception as e:
            logger.warning(f"New search tab did not settle: {e}")

        self.came_from_maps = True
        self.map_redirect_performed = True
        logger.info(f"Map redirect adopted new tab: {self.session.current_url[:80]}")

    async def fix_top_mode(self) -> CorrectionState:
        """
        Leave top mode by clicking the best link in the featured container.

        Returns:
            NOMINAL when the page is not a search page or has no featured
            container, CORRECTED after a verified fix

        Raises:
            CorrectionFailure: No usable link, or the post-click checks
                (URL changed, container gone, result markers present) failed
        """
        if not is_search_url(self.session.current_url):
            return self._enter(CorrectionState.NOMINAL)

        delay = self.timeouts.top_mode_check_delay * (2 if self.came_from_maps else 1)
        await asyncio.sleep(delay)

        probe = await self.session.evaluate(TOP_MODE_PROBE, FEATURED_CONTAINER) or {}
        if not probe.get("present"):
            logger.info("Featured container absent, page is in standard mode")
            return self._enter(CorrectionState.NOMINAL)

        self._enter(CorrectionState.NEEDS_TOP_MODE_FIX)
        candidates = rank_candidates(probe.get("links") or [])
        if not candidates:
            raise CorrectionFailure(
                "Featured container has no usable link", step="top_mode", failed_checks=["no_candidate_link"]
            )

        best = candidates[0]
        elements = await self.session.query_all("a[href]", within=FEATURED_CONTAINER)
        if best.index >= len(elements):
            raise CorrectionFailure(
                "Featured link disappeared before click", step="top_mode", failed_checks=["link_detached"]
            )

        before = self.session.current_url
        logger.info(f"Top mode detected, clicking featured link (score={best.score}): {best.href[:100]}")
        try:
            await self.session.click_and_wait_for_navigation(elements[best.index], self.timeouts.top_mode_navigation)
        except ClickError as e:
            raise CorrectionFailure(str(e), step="top_mode", failed_checks=["click_failed"]) from e

        check = await self.session.evaluate(
            PAGE_CHECK,
            {"container": FEATURED_CONTAINER, "search": SEARCH_RESULT_MARKERS, "business": BUSINESS_DETAIL_MARKERS},
        ) or {}

        failed_checks = []
        if self.session.current_url == before:
            failed_checks.append("url_unchanged")
        if check.get("featured", True):
            failed_checks.append("featured_still_present")
        if not (check.get("search") or check.get("business")):
            failed_checks.append("no_result_markers")
        if failed_checks:
            raise CorrectionFailure("Top-mode fix did not converge", step="top_mode", failed_checks=failed_checks)

        self.top_mode_corrected = True
        logger.info(f"Top mode corrected: {self.session.current_url[:80]}")
        await self.session.humanizer.delay(5000, 7000)
        return self._enter(CorrectionState.CORRECTED)

    async def correct(self) -> CorrectionState:
        """
        Run the machine once from the current page.

        Map view: redirect, settle, then one top-mode fix. Search view: one
        top-mode fix. Any other page is nominal.
        """
        state = self.evaluate()
        try:
            if state == CorrectionState.NEEDS_MAP_REDIRECT:
                await self.redirect_from_map()
                self._enter(CorrectionState.CORRECTED)
                await asyncio.sleep(self.timeouts.maps_settle)
                top_state = await self.fix_top_mode()
                return self._enter(CorrectionState.CORRECTED) if top_state == CorrectionState.NOMINAL else top_state
            if state == CorrectionState.NEEDS_TOP_MODE_FIX:
                return await self.fix_top_mode()
            return state
        except CorrectionFailure as e:
            return self._fail(e)
        except Exception as e:
            redirecting = state == CorrectionState.NEEDS_MAP_REDIRECT and not self.map_redirect_performed
            step = "map_redirect" if redirecting else "top_mode"
            return self._fail(CorrectionFailure(str(e), step=step, failed_checks=["error"]))

    async def recheck_top_mode(self) -> CorrectionState:
        """Top-mode fix only; used between failed start-button searches."""
        self._enter(CorrectionState.EVALUATING)
        try:
            return await self.fix_top_mode()
        except CorrectionFailure as e:
            return self._fail(e)
        except Exception as e:
            return self._fail(CorrectionFailure(str(e), step="top_mode", failed_checks=["error"]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "was_corrected": self.top_mode_corrected,
            "came_from_maps": self.came_from_maps,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }

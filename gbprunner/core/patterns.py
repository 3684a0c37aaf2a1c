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
Selectors and URL patterns for the GBP Check flow.

Selector lists are ordered by priority. URL patterns are compiled
case-insensitively.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Pattern, Sequence, Tuple

START_BUTTON_SELECTORS: List[str] = [
    ".start-main-check-btn",
    "button.start-main-check-btn",
    ".main-btn.start-main-check-btn",
    "button.main-btn.start-main-check-btn",
    'button:has-text("Pré Análise")',
    'button:has-text("Pre Análise")',
    'button:has-text("Start Check")',
    'button:has-text("Iniciar")',
    'button[type="submit"]',
    'input[type="submit"]',
    ".btn",
    "button",
]

MAPS_TO_SEARCH_SELECTORS: List[str] = [
    'a.main-btn[href*="local.google.com/place"]:has-text("Ver na Pesquisa")',
    'a.main-btn[href*="google.com"][target="_blank"]:has-text("Ver na Pesquisa")',
    'a[href*="local.google.com/place"]',
    'a:has-text("Ver na Pesquisa")',
    '.main-btn:has-text("Ver na Pesquisa")',
]

POST_COMPLETION_SELECTOR = "#actions-main-header-button-dropdown > a:nth-child(3) > i"

# Elements injected by the extension; counted for diagnostics only.
EXTENSION_MARKERS = ".start-main-check-btn, .main-btn, #gbp-check-main-container"

FEATURED_CONTAINER = '[aria-label="Resultados em destaque"]'

SEARCH_RESULT_MARKERS: List[str] = ["#search", ".g", "[data-ved]"]
BUSINESS_DETAIL_MARKERS: List[str] = [
    '[data-attrid="kc:/location/location:address"]',
    '[data-attrid="kc:/business/business:phone_number"]',
    ".review-item",
    '[aria-label*="estrela"]',
]

REVIEWS_TEXT_HINTS: Tuple[str, ...] = ("avaliações", "avaliacoes", "reviews", "ver mais")
PLACE_HREF_HINTS: Tuple[str, ...] = ("maps.google.com", "place", "tbm=lcl")
GENERIC_HREF_HINTS: Tuple[str, ...] = ("search", "maps")


def _compile(patterns: Sequence[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


MAPS_URL_PATTERNS = _compile([
    r"maps\.app\.goo\.gl",
    r"maps\.google\.com",
    r"www\.google\.com/maps",
    r"google\.com/maps",
])

SEARCH_URL_PATTERNS = _compile([
    r"www\.google\.com/search",
    r"google\.com/search",
    r"local\.google\.com/place",
])

SHARE_LINK_PATTERN = re.compile(r"share\.google", re.IGNORECASE)

COMPLETION_PRIMARY = re.compile(r"app\.gbpcheck\.com/extension/healthcheck", re.IGNORECASE)

COMPLETION_SECONDARY = _compile([
    r"app\.gbpcheck\.com/.*/complete",
    r"app\.gbpcheck\.com/.*/result",
    r"app\.gbpcheck\.com/.*/finished",
    r"app\.gbpcheck\.com/.*/done",
    r"app\.gbpcheck\.com/.*/success",
])

COMPLETION_GENERIC = _compile([
    r"/complete$",
    r"/result$",
    r"/finished$",
    r"/done$",
    r"/success$",
    r"/thank.*you",
    r"/confirmation",
    r"/final",
])

ALTERNATIVE_URLS: List[str] = [
    "https://www.google.com/search?q=site:google.com+maps",
    "https://www.google.com.br/search?q=google+maps",
    "https://maps.google.com",
    "https://www.google.com",
]

# Playwright error fragments that mean the browser or page is gone.
BROWSER_CLOSED_MARKERS: Tuple[str, ...] = (
    "Target closed",
    "Session closed",
    "Browser has been closed",
    "Connection closed",
    "Protocol error",
    "Target page, context or browser has been closed",
)


class PageKind(str, Enum):
    """Coarse classification of the page under automation."""

    MAP = "map"
    SEARCH = "search"
    OTHER = "other"


class CompletionTier(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    GENERIC = "generic"


def _matches_any(url: str, patterns: Sequence[Pattern[str]]) -> Optional[Pattern[str]]:
    for pattern in patterns:
        if pattern.search(url):
            return pattern
    return None


def is_maps_url(url: str) -> bool:
    return bool(url) and _matches_any(url, MAPS_URL_PATTERNS) is not None


def is_search_url(url: str) -> bool:
    return bool(url) and _matches_any(url, SEARCH_URL_PATTERNS) is not None


def is_share_link(url: str) -> bool:
    return bool(url) and SHARE_LINK_PATTERN.search(url) is not None


def classify_url(url: str) -> PageKind:
    """Map view wins over search view when both match."""
    if is_maps_url(url):
        return PageKind.MAP
    if is_search_url(url):
        return PageKind.SEARCH
    return PageKind.OTHER


def match_completion(url: str) -> Optional[Tuple[CompletionTier, str]]:
    """
    Check ``url`` against the completion patterns in priority order.

    Returns:
        ``(tier, pattern)`` for the first match, or None.
    """
    if not url:
        return None
    if COMPLETION_PRIMARY.search(url):
        return CompletionTier.PRIMARY, COMPLETION_PRIMARY.pattern
    pattern = _matches_any(url, COMPLETION_SECONDARY)
    if pattern is not None:
        return CompletionTier.SECONDARY, pattern.pattern
    pattern = _matches_any(url, COMPLETION_GENERIC)
    if pattern is not None:
        return CompletionTier.GENERIC, pattern.pattern
    return None


def is_browser_closed_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in BROWSER_CLOSED_MARKERS)

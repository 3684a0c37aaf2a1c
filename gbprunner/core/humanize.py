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
Human-like pacing and launch hardening.

The orchestration calls into ``Humanizer`` at fixed points (before a
selector search, before a click) without depending on what it does. A
disabled humanizer turns every call into a no-op.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, List

from playwright.async_api import ElementHandle, Page

from gbprunner.utils.logger import logger

STEALTH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=TranslateUI,AutomationControlled",
    "--exclude-switches=enable-automation",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-hang-monitor",
    "--disable-prompt-on-repost",
    "--disable-sync",
    "--disable-client-side-phishing-detection",
    "--disable-component-update",
    "--disable-domain-reliability",
    "--metrics-recording-only",
    "--no-report-upload",
    "--mute-audio",
    "--no-default-browser-check",
    "--no-first-run",
    "--no-pings",
    "--password-store=basic",
    "--use-mock-keychain",
    "--disable-infobars",
    "--disable-site-isolation-trials",
    "--start-maximized",
    "--window-size=1920,1080",
]

EXTRA_HTTP_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,"
        "image/apng,*/*;q=0.8,application/pdf"
    ),
    "Accept-Language": "pt-BR,pt;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
}

INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['pt-BR', 'pt', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
delete window.__playwright;
delete window.__pw_manual;
delete window.__pwInitScripts;
if (window.navigator.permissions && window.navigator.permissions.query) {
    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications'
            ? Promise.resolve({ state: Notification.permission })
            : originalQuery(parameters)
    );
}
if (window.WebGLRenderingContext) {
    const getParameter = WebGLRenderingContext.prototype.getParameter;
    WebGLRenderingContext.prototype.getParameter = function (parameter) {
        if (parameter === 37445) return 'Intel Inc.';
        if (parameter === 37446) return 'Intel(R) Iris(R) Xe Graphics';
        return getParameter.call(this, parameter);
    };
}
"""


class Humanizer:
    """Random delays, mouse movement and hover-before-click."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    async def delay(self, min_ms: int = 1000, max_ms: int = 3000) -> None:
        if not self.enabled:
            return
        await asyncio.sleep(random.randint(min_ms, max_ms) / 1000)

    async def move_mouse(self, page: Page) -> None:
        if not self.enabled:
            return
        try:
            viewport = page.viewport_size or {"width": 1920, "height": 1080}
            x = random.randint(0, viewport["width"] - 1)
            y = random.randint(0, viewport["height"] - 1)
            await page.mouse.move(x, y, steps=10)
            await self.delay(500, 1500)
        except Exception as e:
            logger.warning(f"Mouse movement skipped: {e}")

    async def natural_scroll(self, page: Page) -> None:
        if not self.enabled:
            return
        try:
            await page.evaluate("() => window.scrollTo(0, Math.floor(Math.random() * 500))")
        except Exception as e:
            logger.warning(f"Scroll skipped: {e}")

    async def before_click(self, element: ElementHandle) -> None:
        """Scroll the element into view and hover it for a moment."""
        if not self.enabled:
            return
        try:
            await element.scroll_into_view_if_needed()
            await self.delay(500, 1000)
            await element.hover()
            await self.delay(500, 1500)
        except Exception as e:
            logger.warning(f"Hover before click skipped: {e}")


def launch_args(extension_path: Any = None) -> List[str]:
    """Chromium arguments, loading an unpacked extension when a path is given."""
    args = list(STEALTH_ARGS)
    if extension_path:
        args = [
            f"--load-extension={extension_path}",
            f"--disable-extensions-except={extension_path}",
        ] + args
    return args

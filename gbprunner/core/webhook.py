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

"""Completion webhook delivery."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

import aiohttp

from gbprunner.exceptions import WebhookDeliveryError
from gbprunner.utils.logger import logger


class WebhookNotifier:
    """
    Posts the job result to a single URL, once.

    There is no retry: a failed delivery is reported to the caller, which
    logs it without changing the job outcome.
    """

    def __init__(self, url: str, timeout: float = 30.0, user_agent: str = "GBP-Check-Automation/1.0") -> None:
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent

    async def deliver(self, payload: Dict[str, Any]) -> int:
        """
        POST ``payload`` as JSON.

        Returns:
            The HTTP status (always 2xx)

        Raises:
            WebhookDeliveryError: On a non-2xx status, timeout or connection error
        """
        headers = {"Content-Type": "application/json", "User-Agent": self.user_agent}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if not 200 <= response.status < 300:
                        body = await response.text()
                        raise WebhookDeliveryError(
                            f"Webhook returned HTTP {response.status}: {body[:200]}",
                            status=response.status,
                        )
                    logger.info(f"Webhook delivered to {self.url} (HTTP {response.status})")
                    return response.status
        except aiohttp.ClientError as e:
            raise WebhookDeliveryError(f"Webhook request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise WebhookDeliveryError(f"Webhook timed out after {self.timeout}s") from e

    async def notify(self, payload: Dict[str, Any]) -> bool:
        """Deliver and log the outcome; never raises."""
        try:
            await self.deliver(payload)
            return True
        except WebhookDeliveryError as e:
            logger.error(f"Webhook delivery failed: {e.message}")
            return False

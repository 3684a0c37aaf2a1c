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

"""Request validation for ``POST /automate``."""

from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import urlparse

from gbprunner.exceptions import ValidationError

_CONTROL_CHARS = re.compile(r"[\t\n\r]")

DEFAULT_WAIT_TIME = 300.0


def clean_target_url(raw: Any) -> str:
    """
    Trim the URL, drop tab/newline characters and check it parses.

    Raises:
        ValidationError: When the URL is missing, not a string, or not an
            absolute http(s) URL
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("URL is required", {"field": "url"})
    if not isinstance(raw, str):
        raise ValidationError("URL must be a string", {"field": "url", "type": type(raw).__name__})

    url = _CONTROL_CHARS.sub("", raw.strip())
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url}", {"field": "url"})
    return url


def validate_name(raw: Any) -> Optional[str]:
    """``name`` is optional, but when present it must be a string."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError("name must be a string", {"field": "name", "type": type(raw).__name__})
    return raw.strip() or None


def validate_wait_time(raw: Any) -> float:
    """``wait_time`` must be a positive number of seconds; null means the default."""
    if raw is None:
        return DEFAULT_WAIT_TIME
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError("wait_time must be a number", {"field": "wait_time", "type": type(raw).__name__})
    if not raw > 0:
        raise ValidationError("wait_time must be positive", {"field": "wait_time"})
    return float(raw)

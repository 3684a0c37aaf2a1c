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
Typed browser-session events and intercepted API traffic.

Playwright callbacks only append to a buffer on the session; the runner
consumes the buffer at explicit checkpoints through
``BrowserSession.drain_events()``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionEvent:
    """Base class for events yielded by a browser session."""

    timestamp: str = field(default_factory=_now_iso, kw_only=True)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = type(self).__name__
        return data


@dataclass
class NewTabEvent(SessionEvent):
    """A page appeared in the context (popup, target=_blank link, window.open)."""

    url: str
    tab_count: int


@dataclass
class DownloadEvent(SessionEvent):
    """A download finished (or failed) and was written under the downloads dir."""

    filename: str
    url: str
    path: Optional[str] = None
    size: Optional[int] = None
    file_type: str = "Unknown File"
    error: Optional[str] = None

    @property
    def saved(self) -> bool:
        return self.error is None and self.path is not None


@dataclass
class InterceptedRequest:
    """One request captured by the API interception routes."""

    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=_now_iso)

    @property
    def user_agent(self) -> Optional[str]:
        return self.headers.get("user-agent")

    @property
    def referer(self) -> Optional[str]:
        return self.headers.get("referer")

    @classmethod
    def from_request(
        cls,
        url: str,
        method: str,
        headers: Dict[str, str],
        post_data: Optional[str],
    ) -> "InterceptedRequest":
        """Build a record, decoding the body as JSON, form-encoded or raw by content type."""
        return cls(url=url, method=method, headers=dict(headers), data=parse_post_data(headers, post_data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "url": self.url,
            "method": self.method,
            "headers": self.headers,
            "data": self.data,
            "user_agent": self.user_agent,
            "referer": self.referer,
        }


def parse_post_data(headers: Dict[str, str], post_data: Optional[str]) -> Optional[Dict[str, Any]]:
    if not post_data:
        return None
    content_type = headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            parsed = json.loads(post_data)
            return parsed if isinstance(parsed, dict) else {"value": parsed}
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(post_data, keep_blank_values=True))
    except ValueError as e:
        return {"raw_data": post_data, "parse_error": str(e)}
    return {"raw_data": post_data}


def summarize_intercepted(requests: List[InterceptedRequest]) -> Dict[str, Any]:
    """Shape the captured traffic the way the ``/api-data`` endpoint reports it."""
    return {
        "total_requests": len(requests),
        "requests": [
            {
                "timestamp": r.timestamp,
                "url": r.url,
                "method": r.method,
                "data_size": len(json.dumps(r.data)) if r.data else 0,
                "has_data": bool(r.data),
                "user_agent": r.user_agent,
                "referer": r.referer,
            }
            for r in requests
        ],
        "detailed_data": [r.to_dict() for r in requests],
    }


def extract_gbp_data(requests: List[InterceptedRequest]) -> Dict[str, Any]:
    """Pull health-check entries, the user e-mail and place identifiers out of captured bodies."""
    gbp_data: Dict[str, Any] = {
        "health_check_data": [],
        "user_info": {},
        "place_data": {},
    }

    for request in requests:
        data = request.data
        if not data:
            continue

        if data.get("method") == "health_check" or "healthcheck" in request.url:
            preview = data.get("data")
            gbp_data["health_check_data"].append({
                "timestamp": request.timestamp,
                "method": data.get("method"),
                "reference_k": data.get("reference_k"),
                "email": data.get("email"),
                "data_preview": f"{preview[:200]}..." if isinstance(preview, str) else None,
                "add_data": data.get("add_data"),
            })

        if data.get("email"):
            gbp_data["user_info"]["email"] = data["email"]

        if data.get("place_id") or data.get("reference_k"):
            gbp_data["place_data"]["reference_key"] = data.get("reference_k")
            gbp_data["place_data"]["place_id"] = data.get("place_id")

    return gbp_data

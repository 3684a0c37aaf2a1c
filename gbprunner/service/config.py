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
Service configuration management for the GBP Check runner.

Configuration is loaded from environment variables, a YAML/JSON file, or
built programmatically. Every wait in the system reads its timeout from
``TimeoutConfig`` so tests can shrink delays to zero.

Example:
    >>> from gbprunner.service.config import ServiceConfig
    >>> config = ServiceConfig()  # Loads from environment
    >>> print(config.queue.max_size)
    10
"""

from __future__ import annotations

import os
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class NavigationStrategy(BaseModel):
    """One rung of the navigation ladder: a Playwright ``wait_until`` and its timeout."""

    wait_until: str = Field(..., description="domcontentloaded, load, networkidle or commit")
    timeout: float = Field(..., gt=0, description="Timeout in seconds")


def _default_ladder() -> List[NavigationStrategy]:
    return [
        NavigationStrategy(wait_until="domcontentloaded", timeout=30.0),
        NavigationStrategy(wait_until="load", timeout=45.0),
        NavigationStrategy(wait_until="networkidle", timeout=60.0),
        NavigationStrategy(wait_until="commit", timeout=20.0),
    ]


class QueueConfig(BaseModel):
    """Configuration for the job scheduler.

    Attributes:
        max_size: Maximum number of pending jobs before admission is rejected
        history_size: Capacity of the completed-job ring buffer
        sample_window: Number of recent durations in the rolling average
        default_duration: Average used (seconds) before any job has finished
    """

    max_size: int = Field(default=10, ge=1, le=1000, description="Maximum pending jobs")
    history_size: int = Field(default=50, ge=1, description="Completed history capacity")
    sample_window: int = Field(default=10, ge=1, description="Rolling average window")
    default_duration: float = Field(default=120.0, ge=0.0, description="Seed average in seconds")


class BrowserConfig(BaseModel):
    """Configuration for the browser launched per job."""

    browser_type: str = Field(default="chromium", description="chromium, firefox or webkit")
    default_headless: bool = Field(default=False, description="Headless when the request does not say")
    viewport_width: int = Field(default=1920, ge=320)
    viewport_height: int = Field(default=1080, ge=240)
    locale: str = Field(default="pt-BR")
    timezone_id: str = Field(default="America/Sao_Paulo")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
    )
    extension_path: Optional[str] = Field(default=None, description="Unpacked extension directory to load")
    user_data_dir: Optional[str] = Field(
        default=None, description="Persistent profile used with an extension; a temp dir when unset"
    )
    humanize: bool = Field(default=True, description="Human-like delays, mouse and hover")


class TimeoutConfig(BaseModel):
    """Timeouts and fixed delays, all in seconds."""

    navigation_ladder: List[NavigationStrategy] = Field(default_factory=_default_ladder)
    strategy_pause: float = Field(default=2.0, ge=0.0, description="Pause between ladder rungs")
    button_search: float = Field(default=5.0, ge=0.0, description="Per-selector wait for the start button")
    maps_settle: float = Field(default=10.0, ge=0.0, description="Settle delay for map views")
    maps_button: float = Field(default=5.0, ge=0.0, description="Per-selector wait for the map-to-search control")
    new_tab_wait: float = Field(default=3.0, ge=0.0, description="Wait for a new tab after the redirect click")
    top_mode_check_delay: float = Field(default=2.0, ge=0.0, description="Delay before inspecting a search page")
    top_mode_navigation: float = Field(default=10.0, ge=0.0, description="Same-document navigation wait")
    extension_warmup: float = Field(default=15.0, ge=0.0, description="Fixed wait for the extension UI")
    poll_interval: float = Field(default=5.0, ge=0.0, description="Completion poll interval")
    button_attempts: int = Field(default=5, ge=1, description="Start-button search attempts")
    button_retry_pause: float = Field(default=2.5, ge=0.0, description="Pause between button attempts")
    post_completion: float = Field(default=3.0, ge=0.0, description="Wait for the post-completion control")


class WebhookConfig(BaseModel):
    """Outbound completion notification."""

    url: Optional[str] = Field(default=None, description="Webhook URL; disabled when unset")
    timeout: float = Field(default=30.0, gt=0.0)
    user_agent: str = Field(default="GBP-Check-Automation/1.0")


class StorageConfig(BaseModel):
    """Where screenshots and downloads are written."""

    screenshots_dir: str = Field(default="./data/screenshots")
    downloads_dir: str = Field(default="./data/downloads")
    artifact_max_age_hours: float = Field(default=24.0, gt=0.0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(default="json", description="json, human or text")
    file: Optional[str] = Field(default=None, description="Rotating JSON log file")


class ServiceConfig(BaseSettings):
    """Main service configuration loaded from environment variables.

    Environment variables are prefixed with GBPRUNNER_ and use uppercase.
    Nested configs use double underscore as separator.

    Example:
        GBPRUNNER_PORT=3000
        GBPRUNNER_QUEUE__MAX_SIZE=20
        GBPRUNNER_WEBHOOK__URL=https://hooks.example.com/gbp
    """

    host: str = Field(default="0.0.0.0", description="Service host")
    port: int = Field(default=3000, ge=1, le=65535, description="Service port")
    env: str = Field(default="development", description="Environment name")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="CORS origins")

    queue: QueueConfig = Field(default_factory=QueueConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "GBPRUNNER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# Global configuration instance
_config: Optional[ServiceConfig] = None


def get_config() -> ServiceConfig:
    """Get the global service configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = ServiceConfig()
    return _config


def set_config(config: ServiceConfig) -> None:
    """Replace the global configuration (used by the CLI and tests)."""
    global _config
    _config = config


def reload_config() -> ServiceConfig:
    """Reload configuration from environment.

    Returns:
        Fresh ServiceConfig instance
    """
    global _config
    _config = ServiceConfig()
    return _config


def load_config_from_file(path: str) -> ServiceConfig:
    """Load configuration from a YAML or JSON file.

    Environment variables still apply to fields the file leaves out.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file format is invalid
    """
    import json
    import yaml

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        if path.endswith(".yaml") or path.endswith(".yml"):
            data = yaml.safe_load(f)
        elif path.endswith(".json"):
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {path}")

    global _config
    _config = ServiceConfig(**(data or {}))
    return _config


def save_config_to_file(config: ServiceConfig, path: str) -> None:
    """Save configuration to a YAML or JSON file."""
    import json
    import yaml

    data = config.model_dump()

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w") as f:
        if path.endswith(".yaml") or path.endswith(".yml"):
            yaml.safe_dump(data, f, default_flow_style=False)
        elif path.endswith(".json"):
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config file format: {path}")

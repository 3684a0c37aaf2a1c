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

"""Logging configuration for the GBP Check runner."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Tuple

__all__ = [
    "logger",
    "setup_logger",
    "configure_logging",
    "job_logger",
    "LogFormat",
]

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "message", "taskName",
    "thread", "threadName",
}


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    HUMAN = "human"
    TEXT = "text"


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as single-line JSON objects. Fields passed through
    ``extra=`` (such as ``job_id``) are grouped under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname and record.lineno:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Colored terminal formatter; prefixes the job id when one is attached."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%H:%M:%S")

        level = record.levelname
        if self.use_colors:
            color = self.COLORS.get(level, "")
            level_str = f"{color}{self.BOLD}[{level:>8}]{self.RESET}"
            time_str = f"{self.DIM}{timestamp}{self.RESET}"
        else:
            level_str = f"[{level:>8}]"
            time_str = timestamp

        message = record.getMessage()
        job_id = getattr(record, "job_id", None)
        if job_id:
            message = f"[{job_id}] {message}"

        output = f"{time_str} {level_str} {message}"

        if record.exc_info:
            exc_text = self.formatException(record.exc_info)
            if self.use_colors:
                exc_text = f"{self.COLORS['ERROR']}{exc_text}{self.RESET}"
            output += f"\n{exc_text}"

        return output


class TextFormatter(logging.Formatter):
    """Plain text log formatter."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )


class JobLoggerAdapter(logging.LoggerAdapter):
    """Attaches ``job_id`` to every record emitted for one automation job."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("job_id", self.extra["job_id"])
        kwargs["extra"] = extra
        return msg, kwargs


def get_log_level(level_str: str) -> int:
    """
    Convert log level string to logging constant.

    Args:
        level_str: Log level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Logging level constant
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def get_formatter(log_format: LogFormat, use_colors: bool = True) -> logging.Formatter:
    if log_format == LogFormat.JSON:
        return JsonFormatter()
    elif log_format == LogFormat.HUMAN:
        return HumanFormatter(use_colors=use_colors)
    else:
        return TextFormatter()


def _file_handler(log_file: str, level: int) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.JSON,
    human_readable: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure global logging settings for the runner.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format type (JSON, HUMAN, TEXT)
        human_readable: If True, forces human-readable format regardless of log_format
        log_file: Optional path; when set, JSON lines are also written there
            through a rotating file handler
    """
    if human_readable:
        log_format = LogFormat.HUMAN

    log_level = get_log_level(level)

    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(get_formatter(LogFormat(log_format)))
    logger.addHandler(handler)

    if log_file:
        logger.addHandler(_file_handler(log_file, log_level))


def setup_logger(
    name: str = "gbprunner",
    level: int = logging.INFO,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Setup and configure the runner logger from the environment.

    ``GBPRUNNER_LOG_FORMAT`` selects json (default), human or text.
    ``GBPRUNNER_LOG_LEVEL`` overrides ``level`` and ``GBPRUNNER_LOG_FILE``
    adds a rotating JSON file handler.
    """
    log = logging.getLogger(name)
    log.setLevel(level)
    log.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    env_format = os.environ.get("GBPRUNNER_LOG_FORMAT", "json").lower()
    env_level = os.environ.get("GBPRUNNER_LOG_LEVEL", "")
    env_file = os.environ.get("GBPRUNNER_LOG_FILE", "")

    if env_level:
        level = get_log_level(env_level)
        log.setLevel(level)
        handler.setLevel(level)

    if format_string is not None:
        formatter = logging.Formatter(format_string)
    elif env_format == "human":
        formatter = HumanFormatter()
    elif env_format == "text":
        formatter = TextFormatter()
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)
    log.addHandler(handler)

    if env_file:
        log.addHandler(_file_handler(env_file, level))

    return log


def job_logger(job_id: str) -> JobLoggerAdapter:
    """Return a logger that tags every record with ``job_id``."""
    return JobLoggerAdapter(logger, {"job_id": job_id})


# Default logger instance
logger = setup_logger()

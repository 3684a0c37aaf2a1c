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
GBP Check runner CLI.

Usage:
    gbprunner serve [OPTIONS]     # Start the automation service
    gbprunner run URL [OPTIONS]   # Run one automation and print its result
    gbprunner config [OPTIONS]    # Print the effective configuration
    gbprunner version             # Show version information

Examples:
    gbprunner serve --port 3000 --config config.yaml
    gbprunner run "https://maps.google.com/maps/place/X" --wait-time 120 --headless
    gbprunner config --format yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

import yaml

from gbprunner import __version__
from gbprunner.exceptions import GbpRunnerError
from gbprunner.service.config import ServiceConfig, get_config, load_config_from_file, set_config
from gbprunner.utils.logger import LogFormat, configure_logging, logger


def _load_config(path: Optional[str]) -> ServiceConfig:
    if path:
        return load_config_from_file(path)
    return get_config()


def _apply_logging(args: argparse.Namespace, config: ServiceConfig) -> None:
    configure_logging(
        level=args.log_level or config.logging.level,
        log_format=LogFormat(config.logging.format),
        human_readable=args.human_readable,
        log_file=config.logging.file,
    )


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"gbpcheck-runner {__version__}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the FastAPI service with uvicorn."""
    import uvicorn

    config = _load_config(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    set_config(config)
    _apply_logging(args, config)

    logger.info(f"Serving on {config.host}:{config.port}")
    uvicorn.run(
        "gbprunner.service.app:app",
        host=config.host,
        port=config.port,
        reload=args.reload,
        log_level=(args.log_level or config.logging.level).lower(),
    )
    return 0


async def _run_once(config: ServiceConfig, args: argparse.Namespace) -> dict:
    from gbprunner.core.artifacts import ArtifactStore
    from gbprunner.core.runner import AutomationRunner
    from gbprunner.core.scheduler import Job, JobParams
    from gbprunner.core.webhook import WebhookNotifier
    from gbprunner.service.validation import clean_target_url

    artifacts = ArtifactStore(config.storage.screenshots_dir, config.storage.downloads_dir)
    webhook = None
    if config.webhook.url and not args.no_webhook:
        webhook = WebhookNotifier(config.webhook.url, config.webhook.timeout, config.webhook.user_agent)

    runner = AutomationRunner(config, artifacts, webhook=webhook)
    job = Job(
        url=clean_target_url(args.url),
        params=JobParams(
            wait_time=args.wait_time,
            button_selectors=args.selector or [],
            headless=config.browser.default_headless if args.headless is None else args.headless,
            name=args.name,
        ),
    )
    return await runner.execute(job)


def cmd_run(args: argparse.Namespace) -> int:
    """Run one automation in-process and print the JSON result."""
    config = _load_config(args.config)
    _apply_logging(args, config)

    try:
        result = asyncio.run(_run_once(config, args))
    except GbpRunnerError as e:
        print(json.dumps({"success": False, **e.to_dict()}, indent=2))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("process_completed") else 2


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    config = _load_config(args.config)
    data = config.model_dump()
    if args.format == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), end="")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="gbprunner",
        description="GBP Check runner - queued browser automation of the GBP Check analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global logging options
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("GBPRUNNER_LOG_LEVEL"),
        help="Set logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--human-readable", "--human",
        action="store_true",
        default=os.environ.get("GBPRUNNER_LOG_FORMAT", "json").lower() == "human",
        help="Use human-readable log format instead of JSON",
    )
    parser.add_argument("--config", "-c", help="YAML or JSON configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=cmd_version)

    serve_parser = subparsers.add_parser("serve", help="Start the automation service")
    serve_parser.add_argument("--host", help="Bind address (default: from config, 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port (default: from config, 3000)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    serve_parser.set_defaults(func=cmd_serve)

    run_parser = subparsers.add_parser("run", help="Run one automation and print the result")
    run_parser.add_argument("url", help="Business profile, maps or share link")
    run_parser.add_argument("--wait-time", type=float, default=300.0, help="Completion deadline in seconds")
    run_parser.add_argument("--headless", action="store_true", default=None, help="Run without a browser window")
    run_parser.add_argument("--name", help="Requester name echoed in the result")
    run_parser.add_argument(
        "--selector", action="append",
        help="Extra start-button selector, tried before the defaults (repeatable)",
    )
    run_parser.add_argument("--no-webhook", action="store_true", help="Skip the completion webhook")
    run_parser.set_defaults(func=cmd_run)

    config_parser = subparsers.add_parser("config", help="Print the effective configuration")
    config_parser.add_argument("--format", choices=["yaml", "json"], default="yaml")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main() -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(0)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()

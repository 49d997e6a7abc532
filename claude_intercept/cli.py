#!/usr/bin/env python3
"""
Command-line interface for the claude-intercept proxy.
"""

from __future__ import annotations

import argparse
from pathlib import Path

COMMANDS = ("serve", "setup", "prettify")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Options left unset fall back to environment variables (PROXY_HOST,
    PROXY_PORT, UPSTREAM_BASE_URL, ARCHIVE_DIR, ...).
    """
    parser = argparse.ArgumentParser(
        description=(
            "Run a logging proxy between Claude Code and its upstream API. "
            "Traffic is relayed unchanged while request, response and SSE "
            "telemetry is archived to disk and shipped to Axiom."
        )
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=COMMANDS,
        help=(
            "serve: run the proxy (default); setup: point ~/.claude/settings.json at the proxy; "
            "prettify: merge archived artifacts into one JSON file per request."
        ),
    )
    parser.add_argument("--host", default=None, help="Interface to listen on (default: PROXY_HOST or 127.0.0.1).")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: PROXY_PORT or 8787).")
    parser.add_argument(
        "--upstream-base",
        dest="upstream_base",
        default=None,
        help="Upstream API base URL (default: UPSTREAM_BASE_URL or ANTHROPIC_BASE_URL from Claude settings).",
    )
    parser.add_argument(
        "--archive-dir",
        dest="archive_dir",
        type=Path,
        default=None,
        help="Directory for archived artifacts (default: ARCHIVE_DIR or ./archives).",
    )
    parser.add_argument(
        "--no-archive",
        dest="archive",
        action="store_false",
        default=None,
        help="Disable writing archive files.",
    )
    parser.add_argument(
        "--proxy-base",
        dest="proxy_base",
        default=None,
        help="Proxy URL written into Claude settings by `setup` (default: PROXY_BASE_URL or http://127.0.0.1:8787).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Process log level.",
    )
    return parser.parse_args(argv)

#!/usr/bin/env python3
"""
Main entry point for the claude-intercept proxy.
"""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path
from typing import NoReturn

from .archive.prettify import prettify_archives
from .cli import parse_args
from .config.claude_settings import default_settings_path, point_settings_at_proxy
from .config.config import MissingSettingError, ProxySettings, RuntimeConfig, runtime_config
from .proxy import start_proxy
from .utils import configure_logging, normalize_base


def get_startup_message(settings: ProxySettings) -> str:
    archive = str(settings.archive_dir) if settings.archive_enabled else "disabled"
    axiom = settings.axiom_dataset if settings.axiom_enabled else "disabled"
    return (
        f"claude-intercept listening on http://{settings.host}:{settings.port} "
        f"-> {settings.upstream_base} (archive: {archive}, axiom: {axiom})"
    )


def resolve_settings(args, config: RuntimeConfig) -> ProxySettings:
    """Environment settings with explicit CLI options layered on top."""
    settings = ProxySettings.from_config(config, upstream_base=args.upstream_base)
    changes = {}
    if args.host:
        changes["host"] = args.host
    if args.port:
        changes["port"] = args.port
    if args.archive_dir:
        changes["archive_dir"] = args.archive_dir
    if args.archive is False:
        changes["archive_enabled"] = False
    return dataclasses.replace(settings, **changes) if changes else settings


def run_setup(args, config: RuntimeConfig) -> None:
    settings_path = default_settings_path(config)
    proxy_base = normalize_base(args.proxy_base or config.get_str("PROXY_BASE_URL", "http://127.0.0.1:8787"))
    env_path = Path.cwd() / ".env"
    upstream = point_settings_at_proxy(
        settings_path,
        proxy_base,
        env_path,
        fallback_upstream=args.upstream_base or config.get_str("UPSTREAM_BASE_URL"),
    )
    print(f"Updated {settings_path}")
    print(f"Proxy base set to: {proxy_base}")
    if upstream:
        print(f"Upstream captured as: {upstream}")
    print(f"Updated {env_path}")


def main(argv: list[str] | None = None) -> NoReturn:
    args = parse_args(argv)
    runtime_config.ensure_loaded()
    configure_logging(args.log_level)

    if args.command == "prettify":
        archive_dir = args.archive_dir or Path(runtime_config.get_str("ARCHIVE_DIR") or Path.cwd() / "archives")
        prettify_archives(archive_dir)
        sys.exit(0)

    if args.command == "setup":
        try:
            run_setup(args, runtime_config)
        except (OSError, ValueError) as exc:
            print(f"ERROR: setup failed: {exc}", file=sys.stderr)
            sys.exit(1)
        sys.exit(0)

    try:
        settings = resolve_settings(args, runtime_config)
    except MissingSettingError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(2)
    except ValueError as exc:
        print(f"ERROR: invalid configuration value: {exc}", file=sys.stderr)
        sys.exit(2)

    print(get_startup_message(settings))
    start_proxy(settings, log_level=args.log_level)
    sys.exit(0)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Read and rewrite Claude Code's ``settings.json`` so traffic flows through the proxy.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

from ..utils import normalize_base
from .config import RuntimeConfig

ENV_DEFAULTS = {
    "AXIOM_DATASET": "claude-intercept",
    "AXIOM_BATCH_SIZE": "100",
    "AXIOM_FLUSH_MS": "1000",
    "AXIOM_AUTO_CREATE_DATASET": "1",
}


def default_settings_path(config: RuntimeConfig) -> Path:
    explicit = config.get_str("CLAUDE_SETTINGS_PATH")
    if explicit:
        return Path(explicit)
    return Path.home() / ".claude" / "settings.json"


def resolve_upstream_base(config: RuntimeConfig) -> str | None:
    """Return UPSTREAM_BASE_URL, falling back to env.ANTHROPIC_BASE_URL in settings.json."""
    explicit = config.get_str("UPSTREAM_BASE_URL")
    if explicit:
        return explicit

    try:
        settings = json.loads(default_settings_path(config).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(settings, dict) or not isinstance(settings.get("env"), dict):
        return None
    base = settings["env"].get("ANTHROPIC_BASE_URL")
    return base if isinstance(base, str) and base else None


def _read_env_map(env_path: Path) -> dict[str, str]:
    entries: dict[str, str] = {}
    try:
        raw = env_path.read_text(encoding="utf-8")
    except OSError:
        return entries
    for line in raw.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        key, sep, value = trimmed.partition("=")
        if not sep or not key.strip():
            continue
        entries[key.strip()] = value.strip()
    return entries


def point_settings_at_proxy(
    settings_path: Path,
    proxy_base: str,
    env_path: Path,
    fallback_upstream: str | None = None,
) -> str | None:
    """Point ANTHROPIC_BASE_URL at the proxy and remember the previous upstream.

    A timestamped backup of the settings file is written first. Returns the
    upstream base that was captured, if any.
    """
    proxy_base = normalize_base(proxy_base)
    raw = settings_path.read_text(encoding="utf-8")
    settings = json.loads(raw)
    env = settings.setdefault("env", {})

    current = env.get("ANTHROPIC_BASE_URL")
    if current and normalize_base(current) != proxy_base:
        upstream = current
    else:
        upstream = fallback_upstream
    if upstream:
        env["UPSTREAM_BASE_URL"] = upstream
    env["ANTHROPIC_BASE_URL"] = proxy_base

    backup = settings_path.with_name(f"{settings_path.name}.backup.{int(time.time() * 1000)}")
    backup.write_text(raw, encoding="utf-8")
    settings_path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")

    env_map = _read_env_map(env_path)
    if upstream:
        env_map.setdefault("UPSTREAM_BASE_URL", normalize_base(upstream))
    for key, value in ENV_DEFAULTS.items():
        env_map.setdefault(key, value)
    env_path.write_text("".join(f"{k}={v}\n" for k, v in env_map.items()), encoding="utf-8")

    return normalize_base(upstream) if upstream else None

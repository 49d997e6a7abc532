#!/usr/bin/env python3
"""
Centralized configuration for the claude-intercept proxy.

Values come from environment variables, optionally seeded from ``.env``
files in the package directory and the current working directory.
Variables already present in the environment always win.
"""

from __future__ import annotations

import os
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterator


class MissingSettingError(Exception):
    """Raised when a required configuration setting is missing."""

    def __init__(self, key: str, hint: str | None = None):
        message = f"Required configuration setting '{key}' is missing"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.key = key


class RuntimeConfig:
    """Environment-backed configuration with .env loading and typed accessors."""

    def __init__(self, overrides: dict[str, str] | None = None):
        self._loaded = False
        self._load_lock = threading.Lock()
        self._overrides = MappingProxyType(overrides) if overrides else None

    def ensure_loaded(self) -> None:
        """Load .env files into the environment once.

        Respects the SKIP_DOTENV environment variable.
        """
        if self._loaded:
            return

        with self._load_lock:
            if self._loaded:
                return
            if not os.getenv("SKIP_DOTENV"):
                self._load_dotenv_files()
            self._loaded = True

    def _load_dotenv_files(self) -> None:
        package_dir = Path(__file__).resolve().parent.parent
        seen: set[Path] = set()
        for candidate in (package_dir / ".env", Path.cwd() / ".env"):
            if candidate not in seen:
                seen.add(candidate)
                load_env_file(candidate)

    def _get_value(self, key: str) -> str | None:
        if self._overrides and key in self._overrides:
            return self._overrides[key]
        return os.getenv(key)

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self._get_value(key)
        return value if value not in (None, "") else default

    def get_int(self, key: str, default: int | None = None) -> int | None:
        """Get an integer value.

        Raises:
            ValueError: If the value cannot be converted to an integer.
        """
        value = self._get_value(key)
        if value in (None, ""):
            return default
        return int(value)

    def get_float(self, key: str, default: float | None = None) -> float | None:
        value = self._get_value(key)
        if value in (None, ""):
            return default
        return float(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get a boolean value.

        Recognizes 1, true, yes, on (case-insensitive) as True; anything
        else, including the empty string, is False.
        """
        value = self._get_value(key)
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}

    @contextmanager
    def override(self, overrides: dict[str, str]) -> Iterator[None]:
        """Temporarily override configuration values (and os.environ)."""
        original_overrides = self._overrides
        original_env: dict[str, str] = {}

        try:
            for key, value in overrides.items():
                if key in os.environ:
                    original_env[key] = os.environ[key]
                os.environ[key] = value

            merged = dict(original_overrides) if original_overrides else {}
            merged.update(overrides)
            self._overrides = MappingProxyType(merged)
            yield
        finally:
            self._overrides = original_overrides
            for key in overrides:
                if key in original_env:
                    os.environ[key] = original_env[key]
                else:
                    os.environ.pop(key, None)


def load_env_file(path: Path) -> None:
    """Copy KEY=VALUE pairs from ``path`` into os.environ without overwriting."""
    if not path.is_file():
        return
    try:
        for raw_line in path.read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and key not in os.environ:
                os.environ[key] = value
    except OSError as exc:
        print(f"WARNING: failed to load {path}: {exc}", file=sys.stderr)


@dataclass(frozen=True)
class ProxySettings:
    """Resolved settings for one proxy process."""

    upstream_base: str
    host: str = "127.0.0.1"
    port: int = 8787
    archive_enabled: bool = True
    archive_dir: Path = Path("archives")
    axiom_token: str | None = None
    axiom_dataset: str | None = None
    axiom_batch_size: int = 100
    axiom_flush_interval: float = 1.0
    axiom_auto_create_dataset: bool = True
    body_log_max_bytes: int = 65536
    telemetry_log: bool = True

    @property
    def axiom_enabled(self) -> bool:
        return bool(self.axiom_token and self.axiom_dataset)

    @classmethod
    def from_config(cls, config: RuntimeConfig, upstream_base: str | None = None) -> ProxySettings:
        """Build settings from environment values.

        Raises:
            MissingSettingError: If no upstream base URL is available.
        """
        config.ensure_loaded()
        if not upstream_base:
            # Imported lazily: claude_settings reads through this module.
            from .claude_settings import resolve_upstream_base

            upstream_base = resolve_upstream_base(config)
        if not upstream_base:
            raise MissingSettingError(
                "UPSTREAM_BASE_URL",
                "Set UPSTREAM_BASE_URL or configure ANTHROPIC_BASE_URL in ~/.claude/settings.json",
            )

        return cls(
            upstream_base=upstream_base,
            host=config.get_str("PROXY_HOST", "127.0.0.1"),
            port=config.get_int("PROXY_PORT", 8787),
            archive_enabled=config.get_bool("ARCHIVE_ENABLED", True),
            archive_dir=Path(config.get_str("ARCHIVE_DIR") or Path.cwd() / "archives"),
            axiom_token=config.get_str("AXIOM_TOKEN"),
            axiom_dataset=config.get_str("AXIOM_DATASET"),
            axiom_batch_size=config.get_int("AXIOM_BATCH_SIZE", 100),
            axiom_flush_interval=config.get_float("AXIOM_FLUSH_MS", 1000.0) / 1000.0,
            axiom_auto_create_dataset=config.get_bool("AXIOM_AUTO_CREATE_DATASET", True),
            body_log_max_bytes=config.get_int("BODY_LOG_MAX_BYTES", 65536),
            telemetry_log=config.get_bool("TELEMETRY_LOG", True),
        )


runtime_config = RuntimeConfig()

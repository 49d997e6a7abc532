#!/usr/bin/env python3
"""
Merge the per-artifact archive files of each request into one pretty JSON document.
"""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

from ..telemetry.payload import is_text_like
from .writer import ERROR_TEXT, REQUEST_BODY, REQUEST_META, RESPONSE_BODY, RESPONSE_META, RESPONSE_SSE

# Suffix -> artifact kind. Order matters: ".request.meta.json" before ".request.body".
ARTIFACT_KINDS = (
    (f".{REQUEST_META}", "requestMeta"),
    (f".{REQUEST_BODY}", "requestBody"),
    (f".{RESPONSE_META}", "responseMeta"),
    (f".{RESPONSE_BODY}", "responseBody"),
    (f".{RESPONSE_SSE}", "responseSse"),
    (f".{ERROR_TEXT}", "errorText"),
)


def classify_file(name: str) -> tuple[str, str] | None:
    """Return ``(stem, kind)`` for an archive artifact file name."""
    for suffix, kind in ARTIFACT_KINDS:
        if name.endswith(suffix):
            return name[: -len(suffix)], kind
    return None


def sort_json(value: Any) -> Any:
    if isinstance(value, list):
        return [sort_json(item) for item in value]
    if isinstance(value, dict):
        return {key: sort_json(value[key]) for key in sorted(value)}
    return value


def parse_json(raw: str, fallback_label: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return {"parse_error": fallback_label, "raw": raw}


def parse_ndjson(raw: str) -> list[Any]:
    lines = [line.strip() for line in raw.splitlines()]
    return [parse_json(line, f"line_{index + 1}") for index, line in enumerate(line for line in lines if line)]


def body_from_bytes(data: bytes, content_type: str | None) -> dict[str, str]:
    if is_text_like(content_type or ""):
        return {"encoding": "utf8", "text": data.decode("utf-8", errors="replace")}
    return {"encoding": "base64", "base64": base64.b64encode(data).decode("ascii")}


def group_artifacts(archive_dir: Path) -> dict[tuple[Path, str], dict[str, Path]]:
    groups: dict[tuple[Path, str], dict[str, Path]] = {}
    for path in sorted(archive_dir.rglob("*")):
        if not path.is_file():
            continue
        parsed = classify_file(path.name)
        if parsed is None:
            continue
        stem, kind = parsed
        groups.setdefault((path.parent, stem), {})[kind] = path
    return groups


def merge_group(files: dict[str, Path]) -> dict[str, Any]:
    request_meta = parse_json(files["requestMeta"].read_text("utf-8"), REQUEST_META) if "requestMeta" in files else None
    response_meta = (
        parse_json(files["responseMeta"].read_text("utf-8"), RESPONSE_META) if "responseMeta" in files else None
    )

    def meta_field(meta: Any, key: str) -> str | None:
        return meta.get(key) if isinstance(meta, dict) else None

    request_body = None
    if "requestBody" in files:
        request_body = body_from_bytes(
            files["requestBody"].read_bytes(), meta_field(request_meta, "http.request.body.content_type")
        )
    response_body = None
    if "responseBody" in files:
        response_body = body_from_bytes(
            files["responseBody"].read_bytes(), meta_field(response_meta, "http.response.content_type")
        )

    return sort_json(
        {
            "request": {"meta": request_meta, "body": request_body},
            "response": {
                "meta": response_meta,
                "body": response_body,
                "sse_events": parse_ndjson(files["responseSse"].read_text("utf-8")) if "responseSse" in files else None,
            },
            "error": files["errorText"].read_text("utf-8") if "errorText" in files else None,
            "source_files": {kind: str(path) for kind, path in files.items()},
        }
    )


def prettify_archives(archive_dir: Path) -> int:
    """Write ``<stem>.json`` next to each artifact group; returns the group count."""
    if not archive_dir.is_dir():
        print(f"Archive directory not found: {archive_dir}")
        print("Nothing to prettify.")
        return 0

    written = 0
    for (directory, stem), files in group_artifacts(archive_dir).items():
        pretty = merge_group(files)
        (directory / f"{stem}.json").write_text(json.dumps(pretty, indent=2, ensure_ascii=False) + "\n", "utf-8")
        written += 1

    print(f"Prettified {written} archive request groups in place.")
    print(f"Archive dir: {archive_dir}")
    return written

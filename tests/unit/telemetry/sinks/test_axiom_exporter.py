#!/usr/bin/env python3
from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from claude_intercept.config.config import ProxySettings
from claude_intercept.telemetry.queue import ExportError, TelemetryQueue
from claude_intercept.telemetry.sinks.axiom import AxiomExporter, build_axiom_sink


class FakeAxiom:
    """Minimal Axiom API double served through httpx.MockTransport."""

    def __init__(self, create_status: int = 200, ingest_status: int = 200):
        self.create_status = create_status
        self.ingest_status = ingest_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v2/datasets":
            return httpx.Response(self.create_status, json={})
        return httpx.Response(self.ingest_status, text="ingest says no" if self.ingest_status >= 400 else "")

    def paths(self) -> list[str]:
        return [request.url.raw_path.decode() for request in self.requests]


def make_exporter(api: FakeAxiom, **kwargs) -> tuple[AxiomExporter, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return AxiomExporter("xaat-token", kwargs.pop("dataset", "claude logs"), client, **kwargs), client


class TestAxiomExporter:
    """Dataset provisioning and batch ingestion."""

    async def test_send_creates_dataset_once_then_ingests(self):
        api = FakeAxiom()
        exporter, client = make_exporter(api)

        await exporter.send([{"a": 1}])
        await exporter.send([{"b": 2}])
        await client.aclose()

        assert api.paths() == [
            "/v2/datasets",
            "/v1/datasets/claude%20logs/ingest",
            "/v1/datasets/claude%20logs/ingest",
        ]
        create = api.requests[0]
        assert json.loads(create.content) == {"name": "claude logs", "description": "Claude intercept logs"}
        assert create.headers["authorization"] == "Bearer xaat-token"
        assert json.loads(api.requests[1].content) == [{"a": 1}]

    async def test_existing_dataset_counts_as_created(self):
        api = FakeAxiom(create_status=409)
        exporter, client = make_exporter(api)

        assert await exporter.ensure_dataset() is True
        assert exporter.dataset_ensured
        await client.aclose()

    async def test_failed_create_raises(self):
        api = FakeAxiom(create_status=403)
        exporter, client = make_exporter(api)

        with pytest.raises(ExportError) as excinfo:
            await exporter.send([{"a": 1}])
        await client.aclose()

        assert excinfo.value.status_code == 403
        assert api.paths() == ["/v2/datasets"]

    async def test_auto_create_disabled_skips_provisioning(self):
        api = FakeAxiom()
        exporter, client = make_exporter(api, auto_create=False)

        await exporter.send([{"a": 1}])
        await client.aclose()

        assert api.paths() == ["/v1/datasets/claude%20logs/ingest"]

    async def test_ingest_failure_raises_with_status(self):
        api = FakeAxiom(ingest_status=404)
        exporter, client = make_exporter(api)

        with pytest.raises(ExportError) as excinfo:
            await exporter.send([{"a": 1}])
        await client.aclose()

        assert excinfo.value.destination_missing
        assert "ingest says no" in str(excinfo.value)

    async def test_invalidate_forces_recreate(self):
        api = FakeAxiom()
        exporter, client = make_exporter(api)

        await exporter.ensure_dataset()
        exporter.invalidate()
        await exporter.ensure_dataset()
        await client.aclose()

        assert api.paths() == ["/v2/datasets", "/v2/datasets"]

    async def test_queue_recreates_dataset_after_404(self):
        api = FakeAxiom(ingest_status=404)
        exporter, client = make_exporter(api)
        queue = TelemetryQueue(exporter, batch_size=10, flush_interval=60)
        queue.enqueue({"a": 1})

        await queue.drain()
        api.ingest_status = 200
        queue._closing = False
        assert await queue.export() is True
        await client.aclose()

        assert api.paths() == [
            "/v2/datasets",
            "/v1/datasets/claude%20logs/ingest",
            "/v2/datasets",
            "/v1/datasets/claude%20logs/ingest",
        ]


class TestBuildAxiomSink:

    def test_disabled_without_token_or_dataset(self):
        settings = ProxySettings(upstream_base="https://api.example.com/", axiom_dataset="d")
        assert build_axiom_sink(settings, httpx.AsyncClient()) is None

    def test_builds_queue_from_settings(self):
        settings = ProxySettings(
            upstream_base="https://api.example.com/",
            archive_dir=Path("archives"),
            axiom_token="t",
            axiom_dataset="d",
            axiom_batch_size=7,
            axiom_flush_interval=0.25,
            axiom_auto_create_dataset=False,
        )
        sink = build_axiom_sink(settings, httpx.AsyncClient())

        assert isinstance(sink, TelemetryQueue)
        assert sink.batch_size == 7
        assert sink.flush_interval == 0.25
        assert sink.exporter.dataset == "d"
        assert sink.exporter.auto_create is False

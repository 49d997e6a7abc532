#!/usr/bin/env python3
from __future__ import annotations

from typing import Any, Sequence
from urllib.parse import quote

import httpx

from ...config.config import ProxySettings
from ...utils import get_logger
from ..queue import ExportError, TelemetryQueue

AXIOM_API = "https://api.axiom.co"
DATASET_DESCRIPTION = "Claude intercept logs"


class AxiomExporter:
    """Ships record batches to an Axiom dataset, creating the dataset on demand."""

    def __init__(
        self,
        token: str,
        dataset: str,
        client: httpx.AsyncClient,
        auto_create: bool = True,
        base_url: str = AXIOM_API,
    ):
        self.token = token
        self.dataset = dataset
        self.client = client
        self.auto_create = auto_create
        self.base_url = base_url.rstrip("/")
        self.dataset_ensured = False
        self.logger = get_logger("claude_intercept.telemetry.axiom")

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    @property
    def ingest_url(self) -> str:
        return f"{self.base_url}/v1/datasets/{quote(self.dataset, safe='')}/ingest"

    async def ensure_dataset(self) -> bool:
        """Create the dataset once per process; an existing dataset counts as success."""
        if self.dataset_ensured:
            return True
        if not self.auto_create:
            return False

        response = await self.client.post(
            f"{self.base_url}/v2/datasets",
            headers=self.headers,
            json={"name": self.dataset, "description": DATASET_DESCRIPTION},
        )
        if response.status_code == 409:
            self.dataset_ensured = True
            return True
        if not response.is_success:
            raise ExportError(response.status_code, f"dataset create failed: {response.text}")

        self.logger.info(f"Created Axiom dataset: {self.dataset}")
        self.dataset_ensured = True
        return True

    async def send(self, batch: Sequence[dict[str, Any]]) -> None:
        await self.ensure_dataset()
        response = await self.client.post(self.ingest_url, headers=self.headers, json=list(batch))
        if not response.is_success:
            raise ExportError(response.status_code, response.text)

    def invalidate(self) -> None:
        self.dataset_ensured = False


def build_axiom_sink(settings: ProxySettings, client: httpx.AsyncClient) -> TelemetryQueue | None:
    """Queue-backed Axiom sink, or None when no token/dataset is configured."""
    if not settings.axiom_enabled:
        return None
    exporter = AxiomExporter(
        token=settings.axiom_token,
        dataset=settings.axiom_dataset,
        client=client,
        auto_create=settings.axiom_auto_create_dataset,
    )
    return TelemetryQueue(
        exporter,
        batch_size=settings.axiom_batch_size,
        flush_interval=settings.axiom_flush_interval,
    )

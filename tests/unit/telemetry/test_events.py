#!/usr/bin/env python3
from __future__ import annotations

import pytest

from claude_intercept.telemetry.events import latency_bucket, latency_fields


class TestLatencyBucket:
    """Bands are inclusive on their upper bound."""

    @pytest.mark.parametrize(
        "duration_ms, expected",
        [
            (0, "le_50ms"),
            (50, "le_50ms"),
            (51, "le_100ms"),
            (100, "le_100ms"),
            (250, "le_250ms"),
            (250.5, "le_500ms"),
            (1000, "le_1s"),
            (2999, "le_3s"),
            (10000, "le_10s"),
            (10001, "gt_10s"),
        ],
    )
    def test_bucket_boundaries(self, duration_ms, expected):
        assert latency_bucket(duration_ms) == expected

    def test_latency_fields(self):
        assert latency_fields(12.6) == {
            "event.duration": 12_600_000,
            "latency.ms": 13,
            "latency.bucket": "le_50ms",
        }

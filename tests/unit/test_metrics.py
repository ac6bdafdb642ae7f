"""
Unit tests for the operator metrics.

Uses ``aiohttp.test_utils`` to drive the MetricsServer application.
"""

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from msi_acrpull.errors import ExchangeError
from msi_acrpull.observability.metrics import (
    METRICS_REGISTRY,
    MetricsCollector,
    MetricsServer,
)


def _sample(name: str, labels: dict[str, str]) -> float:
    return METRICS_REGISTRY.get_sample_value(name, labels) or 0.0


@pytest_asyncio.fixture
async def client():
    """Create an aiohttp TestClient from the MetricsServer app."""
    server = TestServer(MetricsServer(port=0).app)
    async with TestClient(server) as cli:
        yield cli


class TestMetricsServer:
    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client):
        MetricsCollector().record_token_expiration(
            "scrape-ns", "b1", datetime(2026, 5, 1, tzinfo=UTC)
        )

        resp = await client.get("/metrics")

        assert resp.status == 200
        body = await resp.text()
        assert "acrpull_token_expiration_timestamp_seconds" in body

    @pytest.mark.asyncio
    async def test_healthz(self, client):
        resp = await client.get("/healthz")

        assert resp.status == 200
        assert await resp.text() == "ok"


class TestMetricsCollector:
    @pytest.mark.asyncio
    async def test_tracks_successful_reconciliation(self):
        labels = {"namespace": "track-ok", "result": "success"}
        before = _sample("acrpull_reconciliation_total", labels)

        async with MetricsCollector().track_reconciliation("track-ok"):
            pass

        assert _sample("acrpull_reconciliation_total", labels) == before + 1
        assert (
            _sample("acrpull_reconciliation_duration_seconds_count", {"namespace": "track-ok"})
            >= 1
        )

    @pytest.mark.asyncio
    async def test_tracks_failed_reconciliation(self):
        labels = {"namespace": "track-err", "result": "error"}
        before = _sample("acrpull_reconciliation_total", labels)

        with pytest.raises(ExchangeError):
            async with MetricsCollector().track_reconciliation("track-err"):
                raise ExchangeError("HTTP 503")

        assert _sample("acrpull_reconciliation_total", labels) == before + 1

    def test_token_refresh_error_by_type(self):
        labels = {"namespace": "refresh-ns", "error_type": "ExchangeError"}
        before = _sample("acrpull_token_refresh_errors_total", labels)

        MetricsCollector().record_token_refresh_error("refresh-ns", ExchangeError("x"))

        assert _sample("acrpull_token_refresh_errors_total", labels) == before + 1

    def test_forget_binding(self):
        collector = MetricsCollector()
        labels = {"namespace": "forget-ns", "binding": "b1"}
        collector.record_token_expiration(
            "forget-ns", "b1", datetime(2026, 5, 1, tzinfo=UTC)
        )
        assert METRICS_REGISTRY.get_sample_value(
            "acrpull_token_expiration_timestamp_seconds", labels
        ) == datetime(2026, 5, 1, tzinfo=UTC).timestamp()

        collector.forget_binding("forget-ns", "b1")
        collector.forget_binding("forget-ns", "b1")

        assert (
            METRICS_REGISTRY.get_sample_value(
                "acrpull_token_expiration_timestamp_seconds", labels
            )
            is None
        )

"""
Prometheus metrics for the MSI AcrPull operator.

This module tracks reconciliation outcomes, token refresh failures and the
expiry of the tokens currently materialized as pull secrets.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

METRICS_REGISTRY = CollectorRegistry()

RECONCILIATION_TOTAL = Counter(
    "acrpull_reconciliation_total",
    "Total number of AcrPullBinding reconciliations",
    ["namespace", "result"],
    registry=METRICS_REGISTRY,
)

RECONCILIATION_DURATION = Histogram(
    "acrpull_reconciliation_duration_seconds",
    "Time spent reconciling AcrPullBindings",
    ["namespace"],
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 90.0),
    registry=METRICS_REGISTRY,
)

TOKEN_REFRESH_ERRORS = Counter(
    "acrpull_token_refresh_errors_total",
    "Total number of failed registry token refreshes",
    ["namespace", "error_type"],
    registry=METRICS_REGISTRY,
)

TOKEN_EXPIRATION_TIMESTAMP = Gauge(
    "acrpull_token_expiration_timestamp_seconds",
    "Unix timestamp when the materialized registry token expires",
    ["namespace", "binding"],
    registry=METRICS_REGISTRY,
)


class MetricsCollector:
    """Convenience wrapper around the module-level metrics."""

    @asynccontextmanager
    async def track_reconciliation(self, namespace: str):
        """
        Context manager to track one reconciliation.

        Args:
            namespace: Namespace of the binding
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception:
            result = "error"
            raise
        finally:
            RECONCILIATION_TOTAL.labels(namespace=namespace, result=result).inc()
            RECONCILIATION_DURATION.labels(namespace=namespace).observe(
                time.time() - start_time
            )

    def record_token_refresh_error(self, namespace: str, error: Exception) -> None:
        TOKEN_REFRESH_ERRORS.labels(
            namespace=namespace, error_type=type(error).__name__
        ).inc()

    def record_token_expiration(
        self, namespace: str, binding: str, expires_on: datetime
    ) -> None:
        TOKEN_EXPIRATION_TIMESTAMP.labels(namespace=namespace, binding=binding).set(
            expires_on.timestamp()
        )

    def forget_binding(self, namespace: str, binding: str) -> None:
        try:
            TOKEN_EXPIRATION_TIMESTAMP.remove(namespace, binding)
        except KeyError:
            pass


async def _serve_metrics(request: web.Request) -> web.Response:
    return web.Response(
        body=generate_latest(METRICS_REGISTRY),
        headers={"Content-Type": CONTENT_TYPE_LATEST},
    )


async def _serve_healthz(request: web.Request) -> web.Response:
    return web.Response(text="ok")


class MetricsServer:
    """Serves /metrics for Prometheus and a plain /healthz next to it."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = web.Application()
        self.app.add_routes(
            [web.get("/metrics", _serve_metrics), web.get("/healthz", _serve_healthz)]
        )
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind the listener. Raises OSError when the port is taken."""
        runner = web.AppRunner(self.app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self.host, self.port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info(f"Serving Prometheus metrics on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Metrics endpoint closed")


# Shared collector used by the reconciler
metrics_collector = MetricsCollector()

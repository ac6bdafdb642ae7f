#!/usr/bin/env python3
"""
MSI AcrPull Operator entry point.

The operator keeps image pull secrets for Azure Container Registry fresh:
for each AcrPullBinding it exchanges a managed identity token for a
registry token, stores it in a pull secret, attaches the secret to a
service account and renews it before it expires.

Usage:
    msi-acrpull-operator
    # Or with kopf directly:
    kopf run -m msi_acrpull.operator --all-namespaces

Environment Variables:
    WATCH_NAMESPACES: Namespaces to reconcile, comma separated (default: all)
    DEFAULT_MANAGED_IDENTITY_RESOURCE_ID: Identity used when a binding names none
    DEFAULT_MANAGED_IDENTITY_CLIENT_ID: Identity used when a binding names none
    DEFAULT_ACR_SERVER: Registry used when a binding names none
    LOG_LEVEL: Root log level
"""

import logging
import random
import sys

import kopf

from msi_acrpull.authorizer import Authorizer, TokenExchanger

# Importing the handler module registers its decorators with kopf
from msi_acrpull.handlers import acrpullbinding  # noqa: F401
from msi_acrpull.observability.logging import setup_structured_logging
from msi_acrpull.observability.metrics import MetricsServer
from msi_acrpull.services import AcrPullBindingReconciler
from msi_acrpull.settings import settings as operator_settings
from msi_acrpull.utils import KubernetesObjectStore, ReconcileGate, get_kubernetes_client

OPERATOR_NAME = "msi-acrpull-operator"
LIVENESS_ENDPOINT = "http://0.0.0.0:8080/healthz"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    setup_structured_logging(
        log_level=operator_settings.log_level,
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def build_reconciler(store: KubernetesObjectStore) -> AcrPullBindingReconciler:
    """Wire the reconciler with the production authorizer."""
    exchanger = TokenExchanger(
        scope=operator_settings.acr_scope,
        timeout=operator_settings.registry_http_timeout_seconds,
    )
    return AcrPullBindingReconciler(
        store=store,
        authorizer=Authorizer(exchanger=exchanger),
        settings=operator_settings,
    )


async def start_metrics_server() -> MetricsServer | None:
    """Start the metrics endpoint, or return None if it cannot bind."""
    server = MetricsServer(
        port=operator_settings.metrics_port, host=operator_settings.metrics_host
    )
    try:
        await server.start()
    except OSError as e:
        # Pull secrets keep flowing without metrics
        logger.error(f"Metrics endpoint unavailable, continuing without it: {e}")
        return None
    return server


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Tune kopf and populate the memo shared by all handlers.

    The memo carries the object store, the reconciler, the per-binding
    reconcile gate and the metrics server (None when it failed to bind).
    """
    settings.watching.reconnect_backoff = 1.0
    settings.execution.max_workers = 20

    # Replicas peer under one name; the highest random priority does the work
    settings.peering.name = OPERATOR_NAME
    settings.peering.priority = random.randint(0, 32767)

    namespaces = operator_settings.watched_namespaces
    logger.info(
        f"Starting {OPERATOR_NAME} "
        f"(namespaces: {', '.join(namespaces) if namespaces else 'all'}, "
        f"peering priority {settings.peering.priority})"
    )
    if operator_settings.default_acr_server:
        logger.info(f"Default ACR server: {operator_settings.default_acr_server}")

    store = KubernetesObjectStore(get_kubernetes_client())
    memo.store = store
    memo.reconciler = build_reconciler(store)
    memo.reconcile_gate = ReconcileGate()
    memo.metrics_server = await start_metrics_server()


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    logger.info(f"Shutting down {OPERATOR_NAME}")
    server = getattr(memo, "metrics_server", None)
    if server is not None:
        await server.stop()
        memo.metrics_server = None


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """Report "starting" until the startup handler has wired the reconciler."""
    ready = getattr(memo, "reconciler", None) is not None
    return {"status": "healthy" if ready else "starting", "operator": OPERATOR_NAME}


def main() -> None:
    configure_logging()

    namespaces = operator_settings.watched_namespaces
    scope = {"namespaces": namespaces} if namespaces else {"clusterwide": True}
    try:
        kopf.run(liveness_endpoint=LIVENESS_ENDPOINT, **scope)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        sys.exit(0)


if __name__ == "__main__":
    main()

"""
AcrPullBinding handlers - kopf wiring for the binding reconciler.

Every trigger funnels into the same reconciliation:

- create/resume/update events on the binding
- deletion of the binding (finalizer cleanup)
- a per-binding daemon that wakes up shortly before the registry token
  expires
- deletion of a pull secret owned by a binding, which stamps the binding
  so kopf delivers an update event

Reconciliations of the same binding never overlap: all triggers go through
the reconcile gate stored in the operator memo.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import kopf

from msi_acrpull.constants import (
    ACRPULL_GROUP,
    ACRPULL_PLURAL,
    ACRPULL_VERSION,
    FORCE_RECONCILE_ANNOTATION,
    STATUS_EXPIRATION,
)
from msi_acrpull.errors import NotFoundError, OperatorError
from msi_acrpull.observability.logging import (
    generate_correlation_id,
    set_correlation_id,
)
from msi_acrpull.services import ReconcileResult, get_token_refresh_duration
from msi_acrpull.settings import settings as operator_settings
from msi_acrpull.utils.kubernetes import get_controller_binding_name

logger = logging.getLogger(__name__)

# A freshly added finalizer needs exactly one extra pass
MAX_IMMEDIATE_REQUEUES = 3


async def run_reconciliation(
    memo: kopf.Memo, name: str, namespace: str
) -> ReconcileResult:
    """
    Reconcile a binding under its gate, following immediate requeues.

    Args:
        memo: Operator memo holding ``reconciler`` and ``reconcile_gate``
        name: Binding name
        namespace: Binding namespace

    Returns:
        The result of the last reconciliation pass

    Raises:
        OperatorError: If a pass failed
    """
    set_correlation_id(generate_correlation_id())
    async with memo.reconcile_gate.hold(namespace, name):
        result = await memo.reconciler.reconcile(name, namespace)
        for _ in range(MAX_IMMEDIATE_REQUEUES):
            if not result.requeue:
                break
            result = await memo.reconciler.reconcile(name, namespace)
        return result


def get_refresh_delay(status: dict[str, Any] | None, now: datetime | None = None) -> float | None:
    """
    Seconds until the binding's token should be refreshed.

    Returns None when the status carries no usable expiration time, which
    means no token has been issued yet.
    """
    expiration = (status or {}).get(STATUS_EXPIRATION)
    if not expiration:
        return None
    try:
        expires_on = datetime.fromisoformat(expiration.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        logger.warning(f"Ignoring unparsable {STATUS_EXPIRATION}: {expiration!r}")
        return None
    if expires_on.tzinfo is None:
        expires_on = expires_on.replace(tzinfo=UTC)

    return get_token_refresh_duration(
        expires_on, now=now, buffer=operator_settings.token_refresh_buffer
    ).total_seconds()


@kopf.on.create(ACRPULL_PLURAL, group=ACRPULL_GROUP, version=ACRPULL_VERSION, backoff=1.5)
@kopf.on.resume(ACRPULL_PLURAL, group=ACRPULL_GROUP, version=ACRPULL_VERSION, backoff=1.5)
@kopf.on.update(ACRPULL_PLURAL, group=ACRPULL_GROUP, version=ACRPULL_VERSION, backoff=1.5)
async def ensure_acr_pull_binding(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Ensure the binding's pull secret exists, is fresh and is attached.

    Args:
        name: Name of the AcrPullBinding resource
        namespace: Namespace where the AcrPullBinding resource exists
        memo: Operator memo
    """
    try:
        await run_reconciliation(memo, name, namespace)
    except OperatorError as e:
        raise e.as_kopf_error(
            delay=operator_settings.reconcile_retry_delay_seconds
        ) from e


@kopf.on.delete(ACRPULL_PLURAL, group=ACRPULL_GROUP, version=ACRPULL_VERSION, backoff=1.5)
async def delete_acr_pull_binding(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Detach the pull secret from the service account and release the binding."""
    logger.info(f"AcrPullBinding {namespace}/{name} is being deleted")
    try:
        await run_reconciliation(memo, name, namespace)
    except OperatorError as e:
        raise e.as_kopf_error(
            delay=operator_settings.reconcile_retry_delay_seconds
        ) from e


@kopf.daemon(
    ACRPULL_PLURAL,
    group=ACRPULL_GROUP,
    version=ACRPULL_VERSION,
    cancellation_timeout=10.0,
)
async def refresh_acr_pull_binding(
    name: str,
    namespace: str,
    status: dict[str, Any],
    memo: kopf.Memo,
    stopped: kopf.DaemonStopped,
    **kwargs: Any,
) -> None:
    """
    Refresh the binding's token shortly before it expires.

    The daemon sleeps until the refresh deadline derived from the status
    (kopf keeps ``status`` live for daemons), re-reads it after every sleep
    in case another trigger already refreshed the token, and backs off
    exponentially on failures.

    Args:
        name: Name of the AcrPullBinding resource
        namespace: Namespace where the AcrPullBinding resource exists
        status: Live view of the binding status
        memo: Operator memo
        stopped: Set when the daemon must exit
    """
    backoff = operator_settings.daemon_error_backoff_seconds
    next_delay: float | None = None

    while not stopped:
        if next_delay is None:
            next_delay = get_refresh_delay(status)
            if next_delay is None:
                # No token issued yet; the create handler owns the first pass
                await stopped.wait(operator_settings.reconcile_retry_delay_seconds)
                continue

        if next_delay > 0:
            logger.debug(
                f"Next token refresh for {namespace}/{name} in {next_delay:.0f}s"
            )
            await stopped.wait(next_delay)
            next_delay = None
            continue

        try:
            result = await run_reconciliation(memo, name, namespace)
        except OperatorError as e:
            logger.warning(
                f"Scheduled refresh of {namespace}/{name} failed, "
                f"retrying in {backoff:.0f}s: {e}"
            )
            await stopped.wait(backoff)
            backoff = min(backoff * 2, operator_settings.daemon_max_backoff_seconds)
            continue

        if result.requeue:
            # Requeue limit reached without a refresh
            logger.warning(
                f"AcrPullBinding {namespace}/{name} still needs reconciling, "
                f"retrying in {backoff:.0f}s"
            )
            await stopped.wait(backoff)
            backoff = min(backoff * 2, operator_settings.daemon_max_backoff_seconds)
            continue

        backoff = operator_settings.daemon_error_backoff_seconds
        if result.requeue_after is None:
            logger.debug(f"AcrPullBinding {namespace}/{name} is gone, stopping refresh")
            return
        next_delay = result.requeue_after.total_seconds()


def _is_owned_by_binding(meta: dict[str, Any], **_: Any) -> bool:
    return get_controller_binding_name(meta.get("ownerReferences")) is not None


@kopf.on.event("v1", "secrets", when=_is_owned_by_binding)
async def watch_pull_secrets(
    event: dict[str, Any],
    meta: dict[str, Any],
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Re-reconcile a binding whose pull secret was deleted.

    Secret writes do not bump the object generation, so only deletions are
    acted upon; the operator's own creates and updates are ignored.
    """
    if event.get("type") != "DELETED":
        return

    binding_name = get_controller_binding_name(meta.get("ownerReferences"))
    if not binding_name:
        return

    logger.info(
        f"Pull secret {namespace}/{meta.get('name')} was deleted, "
        f"triggering reconciliation of AcrPullBinding {binding_name}"
    )
    try:
        await memo.store.annotate_binding(
            binding_name,
            namespace,
            {FORCE_RECONCILE_ANNOTATION: datetime.now(UTC).isoformat()},
        )
    except NotFoundError:
        logger.debug(
            f"AcrPullBinding {namespace}/{binding_name} no longer exists, "
            f"nothing to reconcile"
        )
    except OperatorError as e:
        logger.warning(f"Failed to trigger reconciliation of {binding_name}: {e}")

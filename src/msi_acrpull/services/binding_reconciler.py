"""
AcrPullBinding reconciler - keeps a binding's pull secret valid.

Each reconciliation re-reads the binding and walks one step of its
lifecycle:

- binding gone: nothing to do
- deletion requested: detach the pull secret from the service account and
  drop the finalizer
- finalizer missing: add it and ask to be called again right away
- otherwise: obtain a fresh registry token, write it to the pull secret,
  attach the secret to the service account, record the status and ask to
  be called again shortly before the token expires

Any failing step aborts the rest of the cycle and is raised to the caller,
which owns retries and backoff.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from kubernetes import client

from ..authorizer import AuthorizerProtocol
from ..constants import (
    ACRPULL_FINALIZER,
    ACRPULL_KIND,
    STATUS_ERROR,
    TOKEN_REFRESH_BUFFER,
)
from ..errors import IdentityAcquisitionError, NotFoundError, OperatorError
from ..models import AccessToken, AcrPullBindingSpec, AcrPullBindingStatus
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..settings import Settings
from ..settings import settings as operator_settings
from ..utils.kubernetes import KubernetesObjectStore
from ..utils.secret_manager import (
    build_secret,
    find_pull_secret,
    get_pull_secret_name,
    render_credential_file,
    update_secret,
)

RESOURCE_TYPE = ACRPULL_KIND.lower()


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of one reconciliation.

    ``requeue`` asks for an immediate new reconciliation; ``requeue_after``
    asks for one after the given delay. Neither set means done.
    """

    requeue: bool = False
    requeue_after: timedelta | None = None


@dataclass(frozen=True)
class BindingTarget:
    """Identity selector and registry resolved for one reconciliation."""

    client_id: str
    resource_id: str
    acr_server: str


def get_token_refresh_duration(
    expires_on: datetime,
    now: datetime | None = None,
    buffer: timedelta = TOKEN_REFRESH_BUFFER,
) -> timedelta:
    """
    Delay until a token should be renewed.

    Returns ``expires_on - now - buffer``, or zero when the token is already
    inside (or past) the buffer window.
    """
    now = now or datetime.now(UTC)
    refresh_duration = expires_on - (now + buffer)
    if refresh_duration < timedelta(0):
        return timedelta(0)
    return refresh_duration


def resolve_binding_target(spec: AcrPullBindingSpec, defaults: Settings) -> BindingTarget:
    """
    Resolve which identity and registry a binding uses.

    Selector precedence: binding client ID, binding resource ID, default
    client ID, default resource ID. Exactly one selector is returned.

    Raises:
        IdentityAcquisitionError: If neither the binding nor the defaults
            name an identity
    """
    acr_server = spec.acr_server or defaults.default_acr_server

    if spec.managed_identity_client_id:
        return BindingTarget(spec.managed_identity_client_id, "", acr_server)
    if spec.managed_identity_resource_id:
        return BindingTarget("", spec.managed_identity_resource_id, acr_server)
    if defaults.default_managed_identity_client_id:
        return BindingTarget(defaults.default_managed_identity_client_id, "", acr_server)
    if defaults.default_managed_identity_resource_id:
        return BindingTarget(
            "", defaults.default_managed_identity_resource_id, acr_server
        )

    raise IdentityAcquisitionError(
        "no managed identity configured: set managedIdentityResourceID or "
        "managedIdentityClientID on the binding, or configure a default"
    )


class AcrPullBindingReconciler:
    """Drives the lifecycle of AcrPullBindings and their pull secrets."""

    def __init__(
        self,
        store: KubernetesObjectStore,
        authorizer: AuthorizerProtocol,
        settings: Settings | None = None,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Access to bindings, secrets and service accounts
            authorizer: Source of registry access tokens
            settings: Operator settings, defaults to the global instance
        """
        self.store = store
        self.authorizer = authorizer
        self.settings = settings or operator_settings
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Reconcile one binding, with logging and metrics.

        Args:
            name: Binding name
            namespace: Binding namespace

        Returns:
            What the caller should schedule next

        Raises:
            OperatorError: If any step failed
        """
        start_time = time.time()
        log = self.logger.bind(
            resource_type=RESOURCE_TYPE, resource_name=name, namespace=namespace
        )
        log.reconcile_started()

        async with metrics_collector.track_reconciliation(namespace=namespace):
            try:
                result = await self._reconcile(name, namespace)
            except OperatorError as e:
                log.reconcile_failed(e, time.time() - start_time)
                raise

        log.reconcile_succeeded(time.time() - start_time)
        return result

    async def _reconcile(self, name: str, namespace: str) -> ReconcileResult:
        binding = await self.store.get_binding(name, namespace)
        if binding is None:
            self.logger.info(
                f"AcrPullBinding {namespace}/{name} not found, "
                f"ignoring since it is being deleted",
                resource_name=name,
                namespace=namespace,
            )
            return ReconcileResult()

        spec = AcrPullBindingSpec.model_validate(binding.get("spec") or {})
        service_account_name = spec.effective_service_account_name

        if binding["metadata"].get("deletionTimestamp"):
            await self.remove_finalizer(binding, service_account_name)
            return ReconcileResult()

        if await self.add_finalizer(binding):
            return ReconcileResult(requeue=True)

        return await self.refresh_pull_secret(binding, spec, service_account_name)

    async def add_finalizer(self, binding: dict[str, Any]) -> bool:
        """Add the finalizer if missing. Returns True if the binding changed."""
        meta = binding["metadata"]
        finalizers = meta.setdefault("finalizers", [])
        if ACRPULL_FINALIZER in finalizers:
            return False

        self.logger.info(
            f"Adding finalizer {ACRPULL_FINALIZER} to AcrPullBinding "
            f"{meta['namespace']}/{meta['name']}"
        )
        finalizers.append(ACRPULL_FINALIZER)
        await self.store.update_binding(binding)
        return True

    async def remove_finalizer(
        self, binding: dict[str, Any], service_account_name: str
    ) -> None:
        """Detach the pull secret from the service account, then drop the finalizer."""
        meta = binding["metadata"]
        name, namespace = meta["name"], meta["namespace"]
        finalizers = meta.get("finalizers") or []
        if ACRPULL_FINALIZER not in finalizers:
            return

        pull_secret_name = get_pull_secret_name(name)
        try:
            service_account = await self.store.get_service_account(
                service_account_name, namespace
            )
        except NotFoundError:
            self.logger.info(
                f"Service account {namespace}/{service_account_name} not found, "
                f"continuing to remove finalizer",
                service_account=service_account_name,
            )
        else:
            references = service_account.image_pull_secrets or []
            remaining = [ref for ref in references if ref.name != pull_secret_name]
            if len(remaining) != len(references):
                service_account.image_pull_secrets = remaining
                await self.store.update_service_account(service_account)
                self.logger.info(
                    f"Removed {pull_secret_name} from service account "
                    f"{namespace}/{service_account_name}",
                    secret_name=pull_secret_name,
                    service_account=service_account_name,
                )

        meta["finalizers"] = [f for f in finalizers if f != ACRPULL_FINALIZER]
        await self.store.update_binding(binding)
        metrics_collector.forget_binding(namespace, name)
        self.logger.info(f"Removed finalizer from AcrPullBinding {namespace}/{name}")

    async def acquire_token(self, spec: AcrPullBindingSpec) -> tuple[AccessToken, str]:
        """Obtain a registry access token. Returns the token and registry host."""
        target = resolve_binding_target(spec, self.settings)
        if target.client_id:
            token = await self.authorizer.acquire_acr_access_token_with_client_id(
                target.client_id, target.acr_server
            )
        else:
            token = await self.authorizer.acquire_acr_access_token_with_resource_id(
                target.resource_id, target.acr_server
            )
        return token, target.acr_server

    async def refresh_pull_secret(
        self,
        binding: dict[str, Any],
        spec: AcrPullBindingSpec,
        service_account_name: str,
    ) -> ReconcileResult:
        """Renew the registry token and propagate it to secret, service account and status."""
        meta = binding["metadata"]
        name, namespace = meta["name"], meta["namespace"]

        try:
            access_token, acr_server = await self.acquire_token(spec)
        except OperatorError as e:
            self.logger.error(f"Failed to get ACR access token for {namespace}/{name}: {e}")
            metrics_collector.record_token_refresh_error(namespace, e)
            await self.set_error_status(binding, e)
            raise

        credential_file = render_credential_file(acr_server, access_token)

        owned_secrets = await self.store.list_owned_secrets(namespace, name)
        pull_secret = find_pull_secret(name, owned_secrets)
        if pull_secret is None:
            self.logger.info(
                f"Creating pull secret {get_pull_secret_name(name)} in {namespace}",
                acr_server=acr_server,
            )
            await self.store.create_secret(build_secret(binding, credential_file))
        else:
            self.logger.info(
                f"Updating pull secret {pull_secret.metadata.name} in {namespace}",
                acr_server=acr_server,
            )
            await self.store.update_secret(update_secret(pull_secret, credential_file))

        await self.attach_pull_secret(namespace, service_account_name, name)
        await self.set_success_status(binding, access_token)
        metrics_collector.record_token_expiration(
            namespace, name, access_token.expires_on
        )

        return ReconcileResult(
            requeue_after=get_token_refresh_duration(
                access_token.expires_on, buffer=self.settings.token_refresh_buffer
            )
        )

    async def attach_pull_secret(
        self, namespace: str, service_account_name: str, binding_name: str
    ) -> None:
        """Reference the pull secret from the service account, once."""
        pull_secret_name = get_pull_secret_name(binding_name)
        service_account = await self.store.get_service_account(
            service_account_name, namespace
        )
        references = service_account.image_pull_secrets or []
        if any(ref.name == pull_secret_name for ref in references):
            return

        self.logger.info(
            f"Attaching {pull_secret_name} to service account "
            f"{namespace}/{service_account_name}",
            secret_name=pull_secret_name,
            service_account=service_account_name,
        )
        service_account.image_pull_secrets = [
            *references,
            client.V1LocalObjectReference(name=pull_secret_name),
        ]
        await self.store.update_service_account(service_account)

    async def set_success_status(
        self, binding: dict[str, Any], access_token: AccessToken
    ) -> None:
        status = AcrPullBindingStatus(
            last_token_refresh_time=datetime.now(UTC),
            token_expiration_time=access_token.expires_on,
        )
        binding["status"] = status.to_k8s()
        await self.store.update_binding_status(binding)

    async def set_error_status(self, binding: dict[str, Any], error: Exception) -> None:
        """Record the error on the binding. Failures here are only logged."""
        status = dict(binding.get("status") or {})
        status[STATUS_ERROR] = str(error)
        binding["status"] = status
        try:
            await self.store.update_binding_status(binding)
        except OperatorError as e:
            self.logger.error(f"Failed to update error status: {e}")

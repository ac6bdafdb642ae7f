"""
Kubernetes utilities for the MSI AcrPull operator.

This module wraps the Kubernetes API calls made during reconciliation.
The official client is synchronous, so every call is pushed to a worker
thread; the awaiting reconciliation stays cancellable.

Key functionality:
- Kubernetes client configuration (in-cluster or kubeconfig)
- AcrPullBinding get/update/status update
- Secrets indexed by their controlling AcrPullBinding
- ServiceAccount get/update
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from msi_acrpull.constants import (
    ACRPULL_API_VERSION,
    ACRPULL_GROUP,
    ACRPULL_KIND,
    ACRPULL_PLURAL,
    ACRPULL_VERSION,
)
from msi_acrpull.errors import NotFoundError, ObjectStoreError
from msi_acrpull.settings import settings as operator_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries in-cluster configuration first and falls back to the local
    kubeconfig for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def get_controller_binding_name(owner_references: list[Any] | None) -> str | None:
    """
    Return the name of the AcrPullBinding controlling an object.

    Accepts owner references either as client models or as raw dicts
    (kopf hands out raw dicts).
    """
    for ref in owner_references or []:
        if isinstance(ref, dict):
            api_version = ref.get("apiVersion")
            kind = ref.get("kind")
            controller = ref.get("controller")
            name = ref.get("name")
        else:
            api_version = ref.api_version
            kind = ref.kind
            controller = ref.controller
            name = ref.name
        if not controller:
            continue
        # Only one controller reference is allowed per object
        if api_version == ACRPULL_API_VERSION and kind == ACRPULL_KIND:
            return name
        return None
    return None


def get_status_reason(error: ApiException) -> str | None:
    """
    Return the reason of the Kubernetes Status carried by an API error.

    ``ApiException.reason`` is the HTTP reason phrase (e.g. "Unprocessable
    Entity" for a 422), while the body holds the Status object with the
    machine-readable reason (e.g. "Invalid"). Falls back to the phrase when
    the body is not a Status.
    """
    try:
        status = json.loads(error.body) if error.body else None
    except (TypeError, ValueError):
        status = None
    if isinstance(status, dict) and status.get("reason"):
        return status["reason"]
    return error.reason


class KubernetesObjectStore:
    """Async facade over the Kubernetes objects touched by the reconciler."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        request_timeout: float | None = None,
    ):
        """
        Initialize the object store.

        Args:
            k8s_client: Optional Kubernetes API client
            request_timeout: Per-request timeout in seconds, defaults to
                KUBERNETES_REQUEST_TIMEOUT_SECONDS
        """
        self.k8s_client = k8s_client
        self.request_timeout = (
            request_timeout
            if request_timeout is not None
            else operator_settings.kubernetes_request_timeout_seconds
        )
        self._core: client.CoreV1Api | None = None
        self._custom: client.CustomObjectsApi | None = None

    @property
    def core(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._core is None:
            if self.k8s_client:
                self._core = client.CoreV1Api(self.k8s_client)
            else:
                self._core = client.CoreV1Api()
        return self._core

    @property
    def custom(self) -> client.CustomObjectsApi:
        """Get CustomObjectsApi client."""
        if self._custom is None:
            if self.k8s_client:
                self._custom = client.CustomObjectsApi(self.k8s_client)
            else:
                self._custom = client.CustomObjectsApi()
        return self._custom

    async def _call(self, description: str, func: Callable[..., T], **kwargs: Any) -> T:
        # to_thread workers cannot be cancelled
        kwargs["_request_timeout"] = self.request_timeout
        try:
            return await asyncio.to_thread(func, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{description}: not found", cause=e) from e
            raise ObjectStoreError(
                f"Failed to {description}",
                status=e.status,
                reason=get_status_reason(e),
                cause=e,
            ) from e

    # AcrPullBinding

    async def get_binding(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Read a binding, returning None when it no longer exists."""
        try:
            return await self._call(
                f"get AcrPullBinding {namespace}/{name}",
                self.custom.get_namespaced_custom_object,
                group=ACRPULL_GROUP,
                version=ACRPULL_VERSION,
                namespace=namespace,
                plural=ACRPULL_PLURAL,
                name=name,
            )
        except NotFoundError:
            return None

    async def update_binding(self, binding: dict[str, Any]) -> dict[str, Any]:
        meta = binding["metadata"]
        return await self._call(
            f"update AcrPullBinding {meta['namespace']}/{meta['name']}",
            self.custom.replace_namespaced_custom_object,
            group=ACRPULL_GROUP,
            version=ACRPULL_VERSION,
            namespace=meta["namespace"],
            plural=ACRPULL_PLURAL,
            name=meta["name"],
            body=binding,
        )

    async def update_binding_status(self, binding: dict[str, Any]) -> dict[str, Any]:
        meta = binding["metadata"]
        return await self._call(
            f"update status of AcrPullBinding {meta['namespace']}/{meta['name']}",
            self.custom.replace_namespaced_custom_object_status,
            group=ACRPULL_GROUP,
            version=ACRPULL_VERSION,
            namespace=meta["namespace"],
            plural=ACRPULL_PLURAL,
            name=meta["name"],
            body=binding,
        )

    async def annotate_binding(
        self, name: str, namespace: str, annotations: dict[str, str]
    ) -> dict[str, Any]:
        return await self._call(
            f"annotate AcrPullBinding {namespace}/{name}",
            self.custom.patch_namespaced_custom_object,
            group=ACRPULL_GROUP,
            version=ACRPULL_VERSION,
            namespace=namespace,
            plural=ACRPULL_PLURAL,
            name=name,
            body={"metadata": {"annotations": annotations}},
        )

    # Secrets

    async def list_owned_secrets(
        self, namespace: str, owner_name: str
    ) -> list[client.V1Secret]:
        """List the secrets in a namespace controlled by the named binding."""
        secrets = await self._call(
            f"list secrets in {namespace}",
            self.core.list_namespaced_secret,
            namespace=namespace,
        )
        return [
            secret
            for secret in secrets.items or []
            if secret.metadata
            and get_controller_binding_name(secret.metadata.owner_references)
            == owner_name
        ]

    async def create_secret(self, secret: client.V1Secret) -> client.V1Secret:
        meta = secret.metadata
        return await self._call(
            f"create secret {meta.namespace}/{meta.name}",
            self.core.create_namespaced_secret,
            namespace=meta.namespace,
            body=secret,
        )

    async def update_secret(self, secret: client.V1Secret) -> client.V1Secret:
        meta = secret.metadata
        return await self._call(
            f"update secret {meta.namespace}/{meta.name}",
            self.core.replace_namespaced_secret,
            name=meta.name,
            namespace=meta.namespace,
            body=secret,
        )

    # ServiceAccounts

    async def get_service_account(
        self, name: str, namespace: str
    ) -> client.V1ServiceAccount:
        """Read a service account, raising NotFoundError when it is missing."""
        return await self._call(
            f"get service account {namespace}/{name}",
            self.core.read_namespaced_service_account,
            name=name,
            namespace=namespace,
        )

    async def update_service_account(
        self, service_account: client.V1ServiceAccount
    ) -> client.V1ServiceAccount:
        meta = service_account.metadata
        return await self._call(
            f"update service account {meta.namespace}/{meta.name}",
            self.core.replace_namespaced_service_account,
            name=meta.name,
            namespace=meta.namespace,
            body=service_account,
        )

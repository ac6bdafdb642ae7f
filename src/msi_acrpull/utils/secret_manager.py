"""
Pull secret rendering utilities.

This module renders registry access tokens into the docker config JSON
document consumed by container runtimes and builds the Kubernetes Secret
objects that carry it. Secrets are owned by their AcrPullBinding through a
controller owner reference, so Kubernetes garbage-collects them with the
binding.
"""

import base64
import json
import logging
from typing import Any

from kubernetes import client

from ..constants import (
    ACR_TOKEN_USERNAME,
    ACRPULL_API_VERSION,
    ACRPULL_KIND,
    DOCKER_CONFIG_KEY,
    DOCKER_CONFIG_SECRET_TYPE,
    PULL_SECRET_SUFFIX,
)
from ..errors import EncodeError
from ..models import AccessToken

logger = logging.getLogger(__name__)


def get_pull_secret_name(binding_name: str) -> str:
    """Deterministic pull secret name for a binding."""
    return f"{binding_name}{PULL_SECRET_SUFFIX}"


def render_credential_file(acr_server: str, access_token: AccessToken) -> bytes:
    """
    Render the docker config JSON document for a single registry.

    Args:
        acr_server: Registry host the credentials are valid for
        access_token: Registry access token used as password

    Returns:
        UTF-8 encoded docker config JSON

    Raises:
        EncodeError: If the document cannot be serialized
    """
    username = ACR_TOKEN_USERNAME
    password = access_token.token
    auth = base64.b64encode(f"{username}:{password}".encode()).decode()

    document = {
        "auths": {
            acr_server: {
                "username": username,
                "password": password,
                "auth": auth,
            }
        }
    }
    try:
        return json.dumps(document).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"unable to create docker config: {e}", cause=e) from e


def _encode_data(credential_file: bytes) -> str:
    return base64.b64encode(credential_file).decode()


def build_owner_reference(binding: dict[str, Any]) -> client.V1OwnerReference:
    """Controller owner reference pointing at an AcrPullBinding."""
    meta = binding["metadata"]
    return client.V1OwnerReference(
        api_version=ACRPULL_API_VERSION,
        kind=ACRPULL_KIND,
        name=meta["name"],
        uid=meta.get("uid", ""),
        controller=True,
        block_owner_deletion=True,
    )


def build_secret(binding: dict[str, Any], credential_file: bytes) -> client.V1Secret:
    """
    Construct a new pull secret owned by the binding.

    Args:
        binding: AcrPullBinding object as returned by the API
        credential_file: Rendered docker config JSON

    Returns:
        Secret ready to be created in the binding's namespace
    """
    meta = binding["metadata"]
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type=DOCKER_CONFIG_SECRET_TYPE,
        metadata=client.V1ObjectMeta(
            name=get_pull_secret_name(meta["name"]),
            namespace=meta["namespace"],
            labels={},
            annotations={},
            owner_references=[build_owner_reference(binding)],
        ),
        data={DOCKER_CONFIG_KEY: _encode_data(credential_file)},
    )


def update_secret(secret: client.V1Secret, credential_file: bytes) -> client.V1Secret:
    """
    Replace the docker config of an existing secret in place.

    Labels, annotations and other data keys are left untouched.
    """
    data = dict(secret.data or {})
    data[DOCKER_CONFIG_KEY] = _encode_data(credential_file)
    secret.data = data
    return secret


def find_pull_secret(
    binding_name: str, secrets: list[client.V1Secret]
) -> client.V1Secret | None:
    """Pick the binding's pull secret out of the secrets it owns."""
    secret_name = get_pull_secret_name(binding_name)
    for secret in secrets:
        if secret.metadata and secret.metadata.name == secret_name:
            return secret
    return None

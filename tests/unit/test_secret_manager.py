"""Unit tests for pull secret rendering."""

import base64
import json
from datetime import UTC, datetime, timedelta

import pytest
from kubernetes import client

from msi_acrpull.constants import ACR_TOKEN_USERNAME
from msi_acrpull.models import AccessToken
from msi_acrpull.utils.secret_manager import (
    build_owner_reference,
    build_secret,
    find_pull_secret,
    get_pull_secret_name,
    render_credential_file,
    update_secret,
)
from tests.unit.factories import make_binding


@pytest.fixture
def access_token() -> AccessToken:
    return AccessToken(
        token="acr-access-token", expires_on=datetime.now(UTC) + timedelta(hours=3)
    )


def _decode(secret: client.V1Secret) -> dict:
    return json.loads(base64.b64decode(secret.data[".dockerconfigjson"]))


class TestRenderCredentialFile:
    def test_single_registry_entry(self, access_token):
        document = json.loads(render_credential_file("example.azurecr.io", access_token))

        assert list(document) == ["auths"]
        assert document["auths"] == {
            "example.azurecr.io": {
                "username": ACR_TOKEN_USERNAME,
                "password": "acr-access-token",
                "auth": base64.b64encode(
                    f"{ACR_TOKEN_USERNAME}:acr-access-token".encode()
                ).decode(),
            }
        }

    def test_auth_decodes_to_username_and_password(self, access_token):
        document = json.loads(render_credential_file("example.azurecr.io", access_token))
        auth = document["auths"]["example.azurecr.io"]["auth"]

        username, password = base64.b64decode(auth).decode().split(":", 1)

        assert username == "00000000-0000-0000-0000-000000000000"
        assert password == access_token.token


class TestBuildSecret:
    def test_secret_layout(self, access_token):
        binding = make_binding(name="b1", namespace="ns")
        credential_file = render_credential_file("example.azurecr.io", access_token)

        secret = build_secret(binding, credential_file)

        assert secret.metadata.name == "b1-msi-acrpull-secret"
        assert secret.metadata.namespace == "ns"
        assert secret.type == "kubernetes.io/dockerconfigjson"
        assert secret.metadata.labels == {}
        assert secret.metadata.annotations == {}
        assert list(secret.data) == [".dockerconfigjson"]
        assert base64.b64decode(secret.data[".dockerconfigjson"]) == credential_file

    def test_owned_by_binding(self, access_token):
        binding = make_binding(name="b1")

        secret = build_secret(
            binding, render_credential_file("example.azurecr.io", access_token)
        )

        (owner,) = secret.metadata.owner_references
        assert owner.api_version == "msi-acrpull.microsoft.com/v1beta1"
        assert owner.kind == "AcrPullBinding"
        assert owner.name == "b1"
        assert owner.uid == "uid-b1"
        assert owner.controller is True
        assert owner.block_owner_deletion is True

    def test_owner_reference_matches_binding(self):
        reference = build_owner_reference(make_binding(name="other"))
        assert reference.name == "other"
        assert reference.uid == "uid-other"


class TestUpdateSecret:
    def test_replaces_only_docker_config(self, access_token):
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name="b1-msi-acrpull-secret",
                namespace="ns",
                labels={"team": "payments"},
                annotations={"note": "keep"},
            ),
            type="kubernetes.io/dockerconfigjson",
            data={".dockerconfigjson": "b2xk", "extra": "dmFsdWU="},
        )
        credential_file = render_credential_file("example.azurecr.io", access_token)

        updated = update_secret(secret, credential_file)

        assert updated is secret
        assert updated.metadata.labels == {"team": "payments"}
        assert updated.metadata.annotations == {"note": "keep"}
        assert updated.data["extra"] == "dmFsdWU="
        assert _decode(updated)["auths"]["example.azurecr.io"]["password"] == (
            "acr-access-token"
        )

    def test_secret_without_data(self, access_token):
        secret = client.V1Secret(metadata=client.V1ObjectMeta(name="s"), data=None)

        update_secret(secret, render_credential_file("example.azurecr.io", access_token))

        assert list(secret.data) == [".dockerconfigjson"]


class TestFindPullSecret:
    def test_finds_by_deterministic_name(self):
        wanted = client.V1Secret(
            metadata=client.V1ObjectMeta(name=get_pull_secret_name("b1"))
        )
        other = client.V1Secret(metadata=client.V1ObjectMeta(name="b1-other"))

        assert find_pull_secret("b1", [other, wanted]) is wanted

    def test_none_when_absent(self):
        other = client.V1Secret(metadata=client.V1ObjectMeta(name="b1-other"))
        assert find_pull_secret("b1", [other]) is None
        assert find_pull_secret("b1", []) is None

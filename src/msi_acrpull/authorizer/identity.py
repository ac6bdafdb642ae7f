"""
Managed identity token acquisition.

The identity provider is consumed through a narrow ``IdentityProvider``
protocol so the authorizer can be tested without Azure. The production
implementation uses ``azure-identity``'s async ``ManagedIdentityCredential``,
which owns its own retry policy.
"""

from dataclasses import dataclass
from typing import Protocol

from azure.identity.aio import ManagedIdentityCredential

from msi_acrpull.constants import ARM_TOKEN_SCOPE


@dataclass(frozen=True)
class ResourceIDSelector:
    """Select a user-assigned identity by its ARM resource ID."""

    resource_id: str

    def __str__(self) -> str:
        return f"resource ID {self.resource_id}"


@dataclass(frozen=True)
class ClientIDSelector:
    """Select a user-assigned identity by its client ID."""

    client_id: str

    def __str__(self) -> str:
        return f"client ID {self.client_id}"


IdentitySelector = ResourceIDSelector | ClientIDSelector


class IdentityProvider(Protocol):
    """Acquires bearer tokens for the management audience."""

    async def acquire_token(self, selector: IdentitySelector) -> str: ...


class ManagedIdentityTokenProvider:
    """IdentityProvider backed by the Azure managed identity endpoint."""

    def __init__(self, scope: str = ARM_TOKEN_SCOPE) -> None:
        self.scope = scope

    @staticmethod
    def _credential(selector: IdentitySelector) -> ManagedIdentityCredential:
        if isinstance(selector, ClientIDSelector):
            return ManagedIdentityCredential(client_id=selector.client_id)
        return ManagedIdentityCredential(resource_id=selector.resource_id)

    async def acquire_token(self, selector: IdentitySelector) -> str:
        async with self._credential(selector) as credential:
            token = await credential.get_token(self.scope)
        return token.token

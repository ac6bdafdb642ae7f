"""
Authorizer - acquires registry access tokens for a managed identity.

Each call performs the full chain: managed identity token, then the
two-step registry exchange. Nothing is cached between calls.
"""

import logging
from typing import Protocol

from msi_acrpull.errors import IdentityAcquisitionError
from msi_acrpull.models import AccessToken

from .identity import (
    ClientIDSelector,
    IdentityProvider,
    IdentitySelector,
    ManagedIdentityTokenProvider,
    ResourceIDSelector,
)
from .token_exchanger import TokenExchanger

logger = logging.getLogger(__name__)


class AuthorizerProtocol(Protocol):
    """Interface the reconciler uses to obtain registry access tokens."""

    async def acquire_acr_access_token_with_resource_id(
        self, identity_resource_id: str, acr_server: str
    ) -> AccessToken: ...

    async def acquire_acr_access_token_with_client_id(
        self, client_id: str, acr_server: str
    ) -> AccessToken: ...


class Authorizer:
    """Chains managed identity token acquisition and the registry exchange."""

    def __init__(
        self,
        identity_provider: IdentityProvider | None = None,
        exchanger: TokenExchanger | None = None,
    ) -> None:
        self.identity_provider = identity_provider or ManagedIdentityTokenProvider()
        self.exchanger = exchanger or TokenExchanger()

    async def acquire_acr_access_token_with_resource_id(
        self, identity_resource_id: str, acr_server: str
    ) -> AccessToken:
        """Acquire a registry access token using an identity resource ID."""
        return await self._acquire(ResourceIDSelector(identity_resource_id), acr_server)

    async def acquire_acr_access_token_with_client_id(
        self, client_id: str, acr_server: str
    ) -> AccessToken:
        """Acquire a registry access token using an identity client ID."""
        return await self._acquire(ClientIDSelector(client_id), acr_server)

    async def _acquire(
        self, selector: IdentitySelector, acr_server: str
    ) -> AccessToken:
        logger.debug(f"Acquiring ARM token for managed identity {selector}")
        try:
            arm_token = await self.identity_provider.acquire_token(selector)
        except Exception as e:
            raise IdentityAcquisitionError(
                f"failed to get ARM access token for {selector}: {e}", cause=e
            ) from e

        return await self.exchanger.exchange_access_token(arm_token, acr_server)

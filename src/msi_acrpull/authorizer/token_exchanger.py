"""
Registry token exchange.

Turns an Azure Resource Manager access token into a registry access token
using the two-step ACR OAuth flow:

1. ``POST https://<registry>/oauth2/exchange`` trades the ARM token for a
   registry refresh token scoped to the registry host.
2. ``POST https://<registry>/oauth2/token`` trades the refresh token for an
   access token with the requested scope (whole-registry pull by default).

The access token's ``exp`` claim is read without verifying the signature.
No key to verify it is available here, and the token was just issued by the
registry endpoint in response to our own ARM token.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx
import jwt

from msi_acrpull.constants import (
    ACR_EXCHANGE_GRANT_TYPE,
    ACR_TOKEN_GRANT_TYPE,
    DEFAULT_ACR_SCOPE,
)
from msi_acrpull.errors import ExchangeError, TokenDecodeError
from msi_acrpull.models import AccessToken

logger = logging.getLogger(__name__)


def build_registry_endpoint(acr_server: str) -> httpx.URL:
    """Build the base URL of the registry authentication endpoint."""
    try:
        endpoint = httpx.URL(f"https://{acr_server}")
    except httpx.InvalidURL as e:
        raise ExchangeError(
            f"failed to parse ACR endpoint {acr_server!r}: {e}", cause=e
        ) from e
    if not acr_server or not endpoint.host:
        raise ExchangeError(f"failed to parse ACR endpoint {acr_server!r}")
    return endpoint


def parse_access_token(token: str, issued_at: datetime | None = None) -> AccessToken:
    """
    Decode the expiry of a registry access token.

    Args:
        token: Raw JWT returned by the registry
        issued_at: Instant the token was obtained, defaults to now

    Returns:
        AccessToken carrying the token and its absolute expiry

    Raises:
        TokenDecodeError: If the token is malformed, has no numeric ``exp``
            claim, or is already expired at issuance
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TokenDecodeError(f"failed to parse ACR access token: {e}", cause=e) from e

    if not isinstance(claims, dict):
        raise TokenDecodeError("unexpected claim type from ACR access token")

    exp = claims.get("exp")
    # bool is an int subclass but never a valid timestamp
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        raise TokenDecodeError("failed to parse ACR access token expiration")

    try:
        expires_on = datetime.fromtimestamp(int(exp), UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise TokenDecodeError(
            f"ACR access token expiration out of range: {exp}", cause=e
        ) from e

    issued_at = issued_at or datetime.now(UTC)
    if expires_on <= issued_at:
        raise TokenDecodeError(
            f"ACR access token already expired at {expires_on.isoformat()}"
        )

    return AccessToken(token=token, expires_on=expires_on)


class TokenExchanger:
    """Exchanges ARM access tokens for registry access tokens."""

    def __init__(
        self,
        scope: str = DEFAULT_ACR_SCOPE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the exchanger.

        Args:
            scope: Scope requested for the access token
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.scope = scope
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self.transport,
            follow_redirects=False,
        )

    async def exchange_access_token(
        self, arm_token: str, acr_server: str
    ) -> AccessToken:
        """
        Exchange an ARM access token for a registry access token.

        Args:
            arm_token: Bearer token issued for the management audience
            acr_server: Registry host, e.g. ``example.azurecr.io``

        Returns:
            AccessToken scoped to ``self.scope``

        Raises:
            ExchangeError: If either exchange call fails or returns no token
            TokenDecodeError: If the access token cannot be decoded
        """
        endpoint = build_registry_endpoint(acr_server)

        # TODO: cache the refresh token per identity once we know how often
        # it can be reused before the registry rejects it.
        async with self._client() as client:
            refresh_token = await self._post_for_token(
                client,
                endpoint.join("/oauth2/exchange"),
                {
                    "grant_type": ACR_EXCHANGE_GRANT_TYPE,
                    "service": endpoint.host,
                    "access_token": arm_token,
                },
                field="refresh_token",
                step="exchanging AAD access token for ACR refresh token",
            )

            access_token = await self._post_for_token(
                client,
                endpoint.join("/oauth2/token"),
                {
                    "grant_type": ACR_TOKEN_GRANT_TYPE,
                    "service": acr_server,
                    "scope": self.scope,
                    "refresh_token": refresh_token,
                },
                field="access_token",
                step="exchanging ACR refresh token for ACR access token",
            )

        token = parse_access_token(access_token)
        logger.debug(
            f"Obtained ACR access token for {acr_server} "
            f"expiring at {token.expires_on.isoformat()}"
        )
        return token

    async def _post_for_token(
        self,
        client: httpx.AsyncClient,
        url: httpx.URL,
        form: dict[str, str],
        field: str,
        step: str,
    ) -> str:
        try:
            response = await client.post(url, data=form)
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as e:
            raise ExchangeError(
                f"failed {step}: HTTP {e.response.status_code}", cause=e
            ) from e
        except httpx.HTTPError as e:
            raise ExchangeError(f"failed {step}: {e}", cause=e) from e
        except ValueError as e:
            raise ExchangeError(f"failed {step}: invalid JSON response", cause=e) from e

        value = payload.get(field) if isinstance(payload, dict) else None
        if not value or not isinstance(value, str):
            raise ExchangeError(f"got an empty response when {step}")
        return value

"""Tests for the registry token exchange and access token decoding."""

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from msi_acrpull.authorizer.token_exchanger import (
    TokenExchanger,
    build_registry_endpoint,
    parse_access_token,
)
from msi_acrpull.errors import ExchangeError, TokenDecodeError
from tests.unit.factories import mint_token


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _registry(routes: dict[str, httpx.Response], seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return routes[request.url.path]

    return httpx.MockTransport(handler)


@pytest.fixture
def expiry() -> int:
    return int((datetime.now(UTC) + timedelta(hours=3)).timestamp())


class TestExchangeAccessToken:
    """Two-step ARM token to registry token exchange."""

    @pytest.mark.asyncio
    async def test_exchanges_arm_token_for_access_token(self, expiry):
        access_token = mint_token(expiry)
        seen: list[httpx.Request] = []
        transport = _registry(
            {
                "/oauth2/exchange": httpx.Response(200, json={"refresh_token": "rt"}),
                "/oauth2/token": httpx.Response(200, json={"access_token": access_token}),
            },
            seen,
        )

        token = await TokenExchanger(transport=transport).exchange_access_token(
            "arm-token", "example.azurecr.io"
        )

        assert token.token == access_token
        assert token.expires_on == datetime.fromtimestamp(expiry, UTC)

        exchange, token_request = seen
        assert exchange.method == "POST"
        assert str(exchange.url) == "https://example.azurecr.io/oauth2/exchange"
        assert exchange.headers["content-type"] == "application/x-www-form-urlencoded"
        assert _form(exchange) == {
            "grant_type": "refresh_token",
            "service": "example.azurecr.io",
            "access_token": "arm-token",
        }

        assert str(token_request.url) == "https://example.azurecr.io/oauth2/token"
        assert _form(token_request) == {
            "grant_type": "refresh_token",
            "service": "example.azurecr.io",
            "scope": "repository:*:pull",
            "refresh_token": "rt",
        }

    @pytest.mark.asyncio
    async def test_uses_configured_scope(self, expiry):
        seen: list[httpx.Request] = []
        transport = _registry(
            {
                "/oauth2/exchange": httpx.Response(200, json={"refresh_token": "rt"}),
                "/oauth2/token": httpx.Response(
                    200, json={"access_token": mint_token(expiry)}
                ),
            },
            seen,
        )
        exchanger = TokenExchanger(scope="repository:app:pull", transport=transport)

        await exchanger.exchange_access_token("arm-token", "example.azurecr.io")

        assert _form(seen[1])["scope"] == "repository:app:pull"

    @pytest.mark.asyncio
    async def test_rejected_exchange_stops_before_token_call(self):
        seen: list[httpx.Request] = []
        transport = _registry(
            {"/oauth2/exchange": httpx.Response(401, json={"errors": "unauthorized"})},
            seen,
        )

        with pytest.raises(ExchangeError, match="HTTP 401"):
            await TokenExchanger(transport=transport).exchange_access_token(
                "arm-token", "example.azurecr.io"
            )

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_empty_refresh_token_is_an_error(self):
        transport = _registry(
            {"/oauth2/exchange": httpx.Response(200, json={"refresh_token": ""})}, []
        )

        with pytest.raises(ExchangeError, match="empty response"):
            await TokenExchanger(transport=transport).exchange_access_token(
                "arm-token", "example.azurecr.io"
            )

    @pytest.mark.asyncio
    async def test_empty_access_token_is_an_error(self):
        transport = _registry(
            {
                "/oauth2/exchange": httpx.Response(200, json={"refresh_token": "rt"}),
                "/oauth2/token": httpx.Response(200, json={}),
            },
            [],
        )

        with pytest.raises(ExchangeError, match="empty response"):
            await TokenExchanger(transport=transport).exchange_access_token(
                "arm-token", "example.azurecr.io"
            )

    @pytest.mark.asyncio
    async def test_invalid_json_is_an_error(self):
        transport = _registry(
            {"/oauth2/exchange": httpx.Response(200, content=b"<html>")}, []
        )

        with pytest.raises(ExchangeError, match="invalid JSON"):
            await TokenExchanger(transport=transport).exchange_access_token(
                "arm-token", "example.azurecr.io"
            )

    @pytest.mark.asyncio
    async def test_transport_failure_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        exchanger = TokenExchanger(transport=httpx.MockTransport(handler))

        with pytest.raises(ExchangeError, match="connection refused"):
            await exchanger.exchange_access_token("arm-token", "example.azurecr.io")

    @pytest.mark.asyncio
    async def test_undecodable_access_token_is_a_decode_error(self):
        transport = _registry(
            {
                "/oauth2/exchange": httpx.Response(200, json={"refresh_token": "rt"}),
                "/oauth2/token": httpx.Response(200, json={"access_token": "not-a-jwt"}),
            },
            [],
        )

        with pytest.raises(TokenDecodeError):
            await TokenExchanger(transport=transport).exchange_access_token(
                "arm-token", "example.azurecr.io"
            )

    @pytest.mark.asyncio
    async def test_empty_registry_is_rejected(self):
        with pytest.raises(ExchangeError, match="failed to parse ACR endpoint"):
            await TokenExchanger().exchange_access_token("arm-token", "")


class TestBuildRegistryEndpoint:
    def test_https_endpoint(self):
        endpoint = build_registry_endpoint("example.azurecr.io")
        assert endpoint.scheme == "https"
        assert endpoint.host == "example.azurecr.io"

    def test_empty_host(self):
        with pytest.raises(ExchangeError):
            build_registry_endpoint("")


class TestParseAccessToken:
    """Expiry decoding of registry access tokens."""

    def test_integer_exp(self, expiry):
        token = parse_access_token(mint_token(expiry))
        assert token.expires_on == datetime.fromtimestamp(expiry, UTC)

    def test_float_exp_is_truncated_to_seconds(self, expiry):
        token = parse_access_token(mint_token(expiry + 0.75))
        assert token.expires_on == datetime.fromtimestamp(expiry, UTC)

    def test_missing_exp(self):
        with pytest.raises(TokenDecodeError, match="expiration"):
            parse_access_token(mint_token(None))

    @pytest.mark.parametrize("exp", ["1700000000", True, [1700000000]])
    def test_non_numeric_exp(self, exp):
        with pytest.raises(TokenDecodeError, match="expiration"):
            parse_access_token(mint_token(exp))

    def test_malformed_token(self):
        with pytest.raises(TokenDecodeError, match="failed to parse ACR access token"):
            parse_access_token("definitely.not.jwt")

    def test_expired_at_issuance(self):
        issued_at = datetime(2026, 5, 1, tzinfo=UTC)
        expired = int((issued_at - timedelta(seconds=1)).timestamp())

        with pytest.raises(TokenDecodeError, match="already expired"):
            parse_access_token(mint_token(expired), issued_at=issued_at)

    def test_expiry_after_explicit_issuance(self):
        issued_at = datetime(2026, 5, 1, tzinfo=UTC)
        exp = int((issued_at + timedelta(hours=3)).timestamp())

        token = parse_access_token(mint_token(exp), issued_at=issued_at)

        assert token.expires_on - issued_at == timedelta(hours=3)

    def test_repr_redacts_token(self, expiry):
        token = parse_access_token(mint_token(expiry))
        assert token.token not in repr(token)

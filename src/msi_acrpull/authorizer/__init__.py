"""
Authorizer package - obtains short-lived registry credentials.

Contains:
- identity.py: managed identity selectors and token provider
- token_exchanger.py: ARM token to registry access token exchange
- authorizer.py: the two entry points used by the reconciler
"""

from .authorizer import Authorizer, AuthorizerProtocol
from .identity import (
    ClientIDSelector,
    IdentityProvider,
    ManagedIdentityTokenProvider,
    ResourceIDSelector,
)
from .token_exchanger import TokenExchanger, parse_access_token

__all__ = [
    "Authorizer",
    "AuthorizerProtocol",
    "ClientIDSelector",
    "IdentityProvider",
    "ManagedIdentityTokenProvider",
    "ResourceIDSelector",
    "TokenExchanger",
    "parse_access_token",
]

"""Registry access token model."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class AccessToken:
    """
    Registry bearer token together with its absolute expiry.

    Tokens are produced fresh on every reconciliation and never persisted;
    only ``expires_on`` ends up in the binding status.
    """

    token: str
    expires_on: datetime

    def __repr__(self) -> str:
        return f"AccessToken(token=<redacted>, expires_on={self.expires_on.isoformat()})"

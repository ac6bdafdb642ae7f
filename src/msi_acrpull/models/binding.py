"""
Pydantic models for AcrPullBinding resources.

An AcrPullBinding links a managed identity to a container registry and a
service account. The identity may be selected by resource ID or by client
ID; both are optional and fall back to operator-wide defaults.
"""

import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from msi_acrpull.constants import (
    DEFAULT_SERVICE_ACCOUNT_NAME,
    STATUS_ERROR,
    STATUS_EXPIRATION,
    STATUS_LAST_REFRESH,
)

_SLASHES = re.compile(r"/{2,}")


class AcrPullBindingSpec(BaseModel):
    """Desired state of an AcrPullBinding."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    managed_identity_resource_id: str = Field(
        "",
        alias="managedIdentityResourceID",
        description="Resource ID of the user-assigned managed identity",
    )
    managed_identity_client_id: str = Field(
        "",
        alias="managedIdentityClientID",
        description="Client ID of the user-assigned managed identity",
    )
    acr_server: str = Field(
        "",
        alias="acrServer",
        description="Registry host name, e.g. example.azurecr.io",
    )
    service_account_name: str = Field(
        "",
        alias="serviceAccountName",
        description="Service account the pull secret is attached to",
    )

    @field_validator("managed_identity_resource_id")
    @classmethod
    def clean_resource_id(cls, v: str) -> str:
        # Collapse duplicate and trailing slashes; "/" alone means unset.
        v = _SLASHES.sub("/", v.strip())
        if len(v) > 1:
            v = v.rstrip("/")
        return "" if v in ("/", ".") else v

    @field_validator("managed_identity_client_id", "acr_server", "service_account_name")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()

    @property
    def effective_service_account_name(self) -> str:
        return self.service_account_name or DEFAULT_SERVICE_ACCOUNT_NAME


class AcrPullBindingStatus(BaseModel):
    """Observed state of an AcrPullBinding."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    last_token_refresh_time: datetime | None = Field(None, alias=STATUS_LAST_REFRESH)
    token_expiration_time: datetime | None = Field(None, alias=STATUS_EXPIRATION)
    error: str | None = Field(None, alias=STATUS_ERROR, description="Last error message")

    def to_k8s(self) -> dict[str, str | None]:
        """Render the status the way it is stored on the custom resource."""
        return {
            STATUS_LAST_REFRESH: _format_time(self.last_token_refresh_time),
            STATUS_EXPIRATION: _format_time(self.token_expiration_time),
            STATUS_ERROR: self.error,
        }


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")

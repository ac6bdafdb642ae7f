"""Environment-driven settings of the MSI AcrPull operator.

Binding defaults, token exchange tuning, retry timing, logging and the
metrics endpoint are all read once at import through pydantic-settings.
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from msi_acrpull.constants import DEFAULT_ACR_SCOPE


class Settings(BaseSettings):
    """Operator settings. Each field maps to the environment variable in its alias."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Process-wide binding defaults
    default_managed_identity_resource_id: str = Field(
        default="",
        description="Managed identity resource ID used when a binding names no identity",
        validation_alias="DEFAULT_MANAGED_IDENTITY_RESOURCE_ID",
    )
    default_managed_identity_client_id: str = Field(
        default="",
        description="Managed identity client ID used when a binding names no identity",
        validation_alias="DEFAULT_MANAGED_IDENTITY_CLIENT_ID",
    )
    default_acr_server: str = Field(
        default="",
        description="Registry host used when a binding names no acrServer",
        validation_alias="DEFAULT_ACR_SERVER",
    )

    # Token exchange
    acr_scope: str = Field(
        default=DEFAULT_ACR_SCOPE,
        description="Scope requested for registry access tokens",
        validation_alias="ACR_SCOPE",
    )
    registry_http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for each call to the registry authentication endpoint",
        validation_alias="REGISTRY_HTTP_TIMEOUT_SECONDS",
    )
    kubernetes_request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for each Kubernetes API request",
        validation_alias="KUBERNETES_REQUEST_TIMEOUT_SECONDS",
    )
    token_refresh_buffer_seconds: int = Field(
        default=1800,
        description="Renew tokens this many seconds before they expire",
        validation_alias="TOKEN_REFRESH_BUFFER_SECONDS",
    )

    # Retry behavior
    reconcile_retry_delay_seconds: int = Field(
        default=30,
        description="Delay kopf waits before retrying a failed reconciliation",
        validation_alias="RECONCILE_RETRY_DELAY_SECONDS",
    )
    daemon_error_backoff_seconds: float = Field(
        default=10.0,
        description="Initial backoff of the refresh daemon after a failed renewal",
        validation_alias="DAEMON_ERROR_BACKOFF_SECONDS",
    )
    daemon_max_backoff_seconds: float = Field(
        default=600.0,
        description="Upper bound of the refresh daemon backoff",
        validation_alias="DAEMON_MAX_BACKOFF_SECONDS",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root log level name",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Emit one JSON object per log line",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Tag log lines with the ID of the reconciliation pass",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log requests to the /healthz and /metrics endpoints",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="WATCH_NAMESPACES",
        description="Namespaces whose bindings are reconciled, comma separated; empty watches the whole cluster",
    )

    # Metrics endpoint
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port serving /metrics and /healthz",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Interface the metrics endpoint listens on",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Namespaces to watch, or None for cluster-wide operation."""
        if self.namespaces:
            names = (part.strip() for part in self.namespaces.split(","))
            return [name for name in names if name] or None
        return None

    @property
    def token_refresh_buffer(self) -> timedelta:
        return timedelta(seconds=self.token_refresh_buffer_seconds)


# Shared instance, read once at import
settings = Settings()

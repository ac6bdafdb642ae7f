"""
Structured logging for the MSI AcrPull operator.

Every reconciliation runs under a correlation ID kept in a ContextVar, so
the log lines of one pass (handler, reconciler, exchanger) can be grouped
even when many bindings are reconciled concurrently. Registry and identity
tokens are never passed to the logger.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_correlation_id: ContextVar[str] = ContextVar("msi_acrpull_correlation_id", default="")

# Access log lines of these endpoints are dropped unless LOG_HEALTH_PROBES is set
PROBE_PATHS = ("/healthz", "/metrics")

# Record attributes copied into JSON output when present
STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "acr_server",
    "service_account",
    "secret_name",
)

QUIET_LOGGERS = ("kopf", "kubernetes", "httpx", "azure", "aiohttp.access")


def generate_correlation_id() -> str:
    """Short random ID, enough to tell concurrent passes apart."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    _correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return _correlation_id.get()


class HealthProbeFilter(logging.Filter):
    """Drops access log lines of probe and scrape requests."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(path in message for path in PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Stamps the current correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        corr_id = _correlation_id.get()
        if not corr_id:
            corr_id = set_correlation_id(generate_correlation_id())
        record.correlation_id = corr_id
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with the binding fields as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        corr_id = getattr(record, "correlation_id", None)
        if corr_id:
            entry["correlation_id"] = corr_id
        entry.update(
            (name, getattr(record, name))
            for name in STRUCTURED_FIELDS
            if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Install a single stream handler on the root logger.

    Args:
        log_level: Root log level name
        enable_json_formatting: Emit JSON lines instead of plain text
        correlation_id_enabled: Attach correlation IDs to records
        log_health_probes: Keep access log lines for /healthz and /metrics
    """
    handler = logging.StreamHandler()
    if enable_json_formatting:
        handler.setFormatter(StructuredFormatter())
    else:
        prefix = "%(asctime)s %(levelname)s %(name)s"
        if correlation_id_enabled:
            prefix += " [%(correlation_id)s]"
        handler.setFormatter(logging.Formatter(f"{prefix}: %(message)s"))

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger that carries binding fields into every record.

    ``bind()`` returns a child carrying extra fields, e.g. the namespace and
    name of the binding being reconciled.
    """

    def __init__(self, name: str, **context: Any):
        self.logger = logging.getLogger(name)
        self.context = context

    def bind(self, **context: Any) -> "OperatorLogger":
        return OperatorLogger(self.logger.name, **{**self.context, **context})

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.log(level, message, exc_info=exc_info, extra={**self.context, **fields})

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def reconcile_started(self) -> None:
        self.info("Reconciling", operation="reconcile_start")

    def reconcile_succeeded(self, duration: float) -> None:
        self.info(
            f"Reconciled in {duration:.2f}s",
            operation="reconcile_success",
            duration=duration,
        )

    def reconcile_failed(self, error: Exception, duration: float) -> None:
        self.error(
            f"Reconciliation failed after {duration:.2f}s: {error}",
            operation="reconcile_error",
            error_type=type(error).__name__,
            duration=duration,
        )

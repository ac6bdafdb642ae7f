"""
Observability package - logging and metrics for the MSI AcrPull operator.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsServer, metrics_collector

__all__ = [
    "OperatorLogger",
    "MetricsServer",
    "metrics_collector",
    "setup_structured_logging",
]

"""
Service layer for the MSI AcrPull operator.

This module provides the reconciler that handles the business logic of
AcrPullBindings, separated from the kopf handler layer.
"""

from .binding_reconciler import (
    AcrPullBindingReconciler,
    ReconcileResult,
    get_token_refresh_duration,
    resolve_binding_target,
)

__all__ = [
    "AcrPullBindingReconciler",
    "ReconcileResult",
    "get_token_refresh_duration",
    "resolve_binding_target",
]

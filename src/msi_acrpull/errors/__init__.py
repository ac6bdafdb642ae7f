"""
Error handling module for the MSI AcrPull operator.

This module provides an error hierarchy that integrates with kopf
and separates identity, exchange, decoding and Kubernetes API failures.
"""

from .operator_errors import (
    EncodeError,
    ExchangeError,
    IdentityAcquisitionError,
    NotFoundError,
    ObjectStoreError,
    OperatorError,
    TokenDecodeError,
)

__all__ = [
    "OperatorError",
    "IdentityAcquisitionError",
    "ExchangeError",
    "TokenDecodeError",
    "EncodeError",
    "ObjectStoreError",
    "NotFoundError",
]

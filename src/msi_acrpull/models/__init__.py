"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- AcrPullBinding specification and status
- Registry access tokens
"""

from .binding import AcrPullBindingSpec, AcrPullBindingStatus
from .token import AccessToken

__all__ = ["AcrPullBindingSpec", "AcrPullBindingStatus", "AccessToken"]

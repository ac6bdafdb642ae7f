"""
Errors raised while reconciling AcrPullBindings.

Each error knows whether retrying can help. Handlers turn them into
``kopf.TemporaryError`` or ``kopf.PermanentError`` through ``as_kopf_error``.
"""

import kopf

DEFAULT_RETRY_DELAY = 30

# API rejections that a retry with the same request cannot fix
PERMANENT_API_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})


class OperatorError(Exception):
    """
    Base class of operator errors.

    Subclasses set ``category`` and ``retryable``; ``user_action`` is appended
    to the message when the operator cannot recover on its own.
    """

    category = "operator"
    retryable = True
    user_action: str | None = None

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause

    def as_kopf_error(
        self, delay: int = DEFAULT_RETRY_DELAY
    ) -> kopf.TemporaryError | kopf.PermanentError:
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=delay)
        return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        message = super().__str__()
        if self.user_action:
            message += f"\nAction required: {self.user_action}"
        return message


class IdentityAcquisitionError(OperatorError):
    """The identity provider could not issue a management token."""

    category = "identity"


class ExchangeError(OperatorError):
    """A registry token exchange call failed or returned no token."""

    category = "exchange"


class TokenDecodeError(OperatorError):
    """The registry access token or its expiry claim could not be decoded."""

    category = "decode"


class EncodeError(OperatorError):
    """The registry credential file could not be rendered."""

    category = "encode"
    retryable = False
    user_action = "Report this as a bug, the credential document is malformed"


class ObjectStoreError(OperatorError):
    """The Kubernetes API rejected or failed a request."""

    category = "object-store"

    def __init__(
        self,
        message: str,
        status: int | None = None,
        reason: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(f"{message} (reason: {reason})" if reason else message, cause)
        self.status = status
        self.reason = reason
        if reason in PERMANENT_API_REASONS:
            self.retryable = False
            self.user_action = "Check RBAC permissions and the resource specification"


class NotFoundError(ObjectStoreError):
    """A required Kubernetes object does not exist."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, status=404, reason="NotFound", cause=cause)

"""
Error Classification

Errors raised across the funding pipeline. Each carries a category and, where the
failure is shown to a user, the message the bot should send.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Categories of errors for propagation decisions."""

    TRANSIENT_READ = "transient_read"   # Balance/oracle read failed, retry next tick
    NO_ROUTE = "no_route"               # Bridge provider has no path
    INVALID_INPUT = "invalid_input"     # Malformed user input during withdrawal
    CUSTODY = "custody"                 # Signer missing or custody provider error
    PROVIDER = "provider"               # Untyped provider payload failed validation
    UNKNOWN = "unknown"


class PerpmateError(Exception):
    """Base class for funding pipeline errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(self, message: str, *, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message


class TransientReadFailure(PerpmateError):
    """A balance read failed; treated as no evidence of funds."""

    category = ErrorCategory.TRANSIENT_READ
    recoverable = True


class NoRouteAvailable(PerpmateError):
    """The bridge provider returned no route for the requested transfer."""

    category = ErrorCategory.NO_ROUTE
    recoverable = True

    def __init__(
        self,
        message: str = "No route available",
        *,
        retry_command: str = "/fund",
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message)
        self.retry_command = retry_command


class InvalidUserInput(PerpmateError):
    """User input was rejected; the session stays on its current step."""

    category = ErrorCategory.INVALID_INPUT
    recoverable = True


class StaleSessionInput(InvalidUserInput):
    """Input arrived with no session or for a step the session is not on."""


class CustodySigningFailure(PerpmateError):
    """Custody provider could not sign or broadcast. Never retried automatically."""

    category = ErrorCategory.CUSTODY


class ProviderResponseError(PerpmateError):
    """A provider answered with a payload that failed boundary validation."""

    category = ErrorCategory.PROVIDER
    recoverable = True

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


__all__ = [
    "ErrorCategory",
    "PerpmateError",
    "TransientReadFailure",
    "NoRouteAvailable",
    "InvalidUserInput",
    "StaleSessionInput",
    "CustodySigningFailure",
    "ProviderResponseError",
]

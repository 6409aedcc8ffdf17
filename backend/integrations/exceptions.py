"""Errors raised by the Plaid integration.

Each error carries an :class:`ErrorCategory` so the sync driver can report
why an institution failed without inspecting exception types itself.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Why a provider call failed."""

    CONNECTION = "connection"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    DATA = "data"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Base class; ``except ProviderError`` catches every Plaid failure."""

    category = ErrorCategory.UNKNOWN
    retriable = False

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Rejected credentials or an Item that needs re-authentication.

    Covers HTTP 401/403 as well as Plaid error codes such as
    ``ITEM_LOGIN_REQUIRED`` that arrive with a 400.
    """

    category = ErrorCategory.AUTH


class InvalidAccessTokenError(ProviderAuthError):
    """Access token lacks a known ``access-<environment>-`` prefix.

    Raised before any request is sent.
    """


class ProviderConnectionError(ProviderError):
    """The request never got an HTTP response (timeout, DNS, refused)."""

    category = ErrorCategory.CONNECTION

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        super().__init__(message, provider_name)
        self.retriable = retriable


class ProviderAPIError(ProviderError):
    """Plaid answered with an error status other than an auth failure."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str = "",
    ):
        super().__init__(message, provider_name)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def category(self) -> ErrorCategory:
        if self.status_code == 429:
            return ErrorCategory.RATE_LIMIT
        return ErrorCategory.UNKNOWN

    @property
    def retriable(self) -> bool:
        """Rate limits and 5xx responses are worth retrying later."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """A record Plaid returned cannot be turned into a ledger entry."""

    category = ErrorCategory.DATA

"""Typed exception hierarchy for provider errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs data issues).  Plaid reports
most failures as an ``error_code`` string; it is carried on every
exception so callers can branch on it.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    def __init__(self, message: str, provider_name: str = "", error_code: str | None = None):
        self.provider_name = provider_name
        self.error_code = error_code
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Credentials missing, expired, or invalid (HTTP 401/403, ITEM_LOGIN_REQUIRED)."""

    pass


class ProviderConnectionError(ProviderError):
    """Network failures such as timeouts or refused connections.

    Retriable by default.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        retriable: bool = True,
        error_code: str | None = None,
    ):
        self.retriable = retriable
        super().__init__(message, provider_name, error_code)


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderMutationDuringPaginationError(ProviderAPIError):
    """Transaction data changed while a sync cursor was being paged.

    The whole pagination must restart from the cursor it started at.
    """

    @property
    def retriable(self) -> bool:
        return True


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass

"""Exceptions raised by the Bazaar client."""

from typing import Optional


class BazaarError(Exception):
    """Base class for all Bazaar client errors."""


class ApiError(BazaarError):
    """The API answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidRequestError(ApiError):
    """Malformed request body (HTTP 400)."""


class AuthenticationError(ApiError):
    """Missing, invalid or expired session token (HTTP 401)."""


class NotFoundError(ApiError):
    """Referenced entity does not exist (HTTP 404)."""


class NetworkError(BazaarError):
    """Transient transport failure: no connectivity or a timeout."""


class CartError(BazaarError):
    """A product cannot be added to the cart as requested."""


class CheckoutError(BazaarError):
    """An order cannot be placed from the current state."""


STATUS_ERRORS: dict[int, type[ApiError]] = {
    400: InvalidRequestError,
    401: AuthenticationError,
    404: NotFoundError,
}


def error_for_status(status_code: int, message: str) -> ApiError:
    """Build the typed error for an HTTP status."""
    error_class = STATUS_ERRORS.get(status_code, ApiError)
    return error_class(message, status_code=status_code)

"""Error taxonomy for API requests."""
from typing import Any, Optional


class RequestError(Exception):
    """Terminal failure of an API request."""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.status = status
        self.response = response

    @property
    def kind(self) -> str:
        return type(self).__name__


class NetworkError(RequestError):
    """Transport failure (DNS, refused connection, reset)."""
    retryable = True


class NetworkUnavailableError(RequestError):
    """Device is offline and the request cannot be served from cache."""


class RequestTimeoutError(RequestError):
    """Request did not complete within its timeout."""
    retryable = True


class ServerError(RequestError):
    """5xx response."""
    retryable = True


class ClientError(RequestError):
    """4xx response other than 401."""


class UnauthorizedError(ClientError):
    """401 response; the session was invalidated and must be re-captured."""

    reauthentication_required = True


class MalformedResponseError(RequestError):
    """Payload is missing its required shape."""


def error_for_status(status: int, message: str, response: Any = None) -> RequestError:
    """
    Classify an HTTP error status.

    Args:
        status: HTTP status code (>= 400)
        message: Human readable message
        response: Parsed response body

    Returns:
        RequestError subclass matching the status
    """
    if status == 401:
        return UnauthorizedError(message, status=status, response=response)
    if 400 <= status < 500:
        return ClientError(message, status=status, response=response)
    return ServerError(message, status=status, response=response)

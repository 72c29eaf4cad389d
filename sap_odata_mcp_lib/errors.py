"""
Error taxonomy for the SAP OData client.

Every error raised by the client derives from ODataError so callers can catch
one type and still branch on the specific cause.
"""

from typing import Optional

import requests


class ODataError(ValueError):
    """Base class for OData client failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason


class AuthenticationError(ODataError):
    """HTTP 401: the credentials were rejected."""


class AuthorizationError(ODataError):
    """HTTP 403: the user lacks authorization."""


class NotFoundError(ODataError):
    """HTTP 404. Often benign for SAP base paths."""


class HTTPStatusError(ODataError):
    """Any other non-success HTTP status."""


class NetworkError(ODataError):
    """The request never produced a response (connection error, timeout)."""


class ProtocolError(ODataError):
    """The server answered with an unexpected payload shape."""


class NotConnectedError(ODataError):
    """An operation was attempted without an active session."""


NO_RESPONSE_MESSAGE = "No response received from server"

_STATUS_ERRORS = {
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
}


def error_for_response(response: requests.Response) -> ODataError:
    """Build the taxonomy error for a non-success response."""
    error_cls = _STATUS_ERRORS.get(response.status_code, HTTPStatusError)
    reason = response.reason or ''
    return error_cls(f"HTTP {response.status_code}: {reason}".rstrip(), status_code=response.status_code, reason=reason)


def describe_error(error: BaseException) -> str:
    """Describe a failure: HTTP status when known, a no-response note, or the raw text."""
    if isinstance(error, ODataError):
        return error.message
    if isinstance(error, requests.exceptions.RequestException):
        response = getattr(error, 'response', None)
        if response is not None:
            return f"HTTP {response.status_code}: {response.reason}"
        if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
            return NO_RESPONSE_MESSAGE
    return str(error) or "Unknown error"


def wrap_error(prefix: str, error: BaseException) -> ODataError:
    """Return an error of the same class whose message is prefixed with the failed operation."""
    message = f"{prefix}: {describe_error(error)}"
    if isinstance(error, ODataError):
        return type(error)(message, status_code=error.status_code, reason=error.reason)
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return NetworkError(message)
    return ODataError(message)

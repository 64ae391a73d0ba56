"""Exception types and user-facing error classification."""

from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel


class ChatRelayError(Exception):
    """Base class for application errors."""


class AgentBackendError(ChatRelayError):
    """The agent backend returned an error or could not be reached."""


class EmptyResponseError(AgentBackendError):
    """The agent backend returned no usable data."""

    def __init__(self, message: str = "OpenCode returned empty response"):
        super().__init__(message)


class AgentResponseParseError(AgentBackendError):
    """A structured backend response could not be decoded."""


class AgentRequestCancelled(AgentBackendError):
    """An in-flight prompt was preempted or stopped."""


class ChatGatewayError(ChatRelayError):
    """The chat platform rejected an API call."""

    def __init__(self, method: str, error: str, needed: Optional[str] = None):
        detail = f" (needed: {needed})" if needed else ""
        super().__init__(f"Slack API error: {error}{detail}")
        self.method = method
        self.error = error
        self.needed = needed


class ActionError(ChatRelayError):
    """Invalid action API request."""


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    EMPTY_RESPONSE = "empty_response"
    UNCATEGORIZED = "uncategorized"


class ErrorInfo(BaseModel):
    kind: ErrorKind
    message: str
    suggestion: str


_TIMEOUT = ErrorInfo(
    kind=ErrorKind.TIMEOUT,
    message="Request timed out",
    suggestion="The operation took too long. Try a simpler request or break it into smaller steps.",
)
_RATE_LIMITED = ErrorInfo(
    kind=ErrorKind.RATE_LIMITED,
    message="Rate limited",
    suggestion="Too many requests. Please wait a moment and try again.",
)
_AUTHENTICATION = ErrorInfo(
    kind=ErrorKind.AUTHENTICATION,
    message="Authentication error",
    suggestion="There may be an issue with API credentials. Contact your administrator.",
)
_NETWORK = ErrorInfo(
    kind=ErrorKind.NETWORK,
    message="Network error",
    suggestion="Unable to connect to the service. Check your network connection.",
)
_EMPTY_RESPONSE = ErrorInfo(
    kind=ErrorKind.EMPTY_RESPONSE,
    message="No response received",
    suggestion="The model didn't generate a response. Try rephrasing your request.",
)
UNCATEGORIZED_SUGGESTION = "If this persists, try starting a new thread or contact support."
UNCATEGORIZED_MESSAGE_LIMIT = 100


def _classify_exception_type(err: BaseException) -> Optional[ErrorInfo]:
    if isinstance(err, httpx.TimeoutException):
        return _TIMEOUT
    if isinstance(err, httpx.HTTPStatusError):
        status = err.response.status_code
        if status == 429:
            return _RATE_LIMITED
        if status in (401, 403):
            return _AUTHENTICATION
    if isinstance(err, (httpx.ConnectError, httpx.NetworkError)):
        return _NETWORK
    if isinstance(err, EmptyResponseError):
        return _EMPTY_RESPONSE
    return None


def categorize_error(err: BaseException) -> ErrorInfo:
    """
    Map an exception to a short label and an actionable suggestion.

    Typed httpx/application errors are matched first, then the message text
    is checked in order for timeout, rate limit, authentication, network and
    empty-response markers.

    Args:
        err: The exception raised while running a request

    Returns:
        ErrorInfo with the display message and suggestion
    """
    typed = _classify_exception_type(err)
    if typed is not None:
        return typed

    text = str(err) or err.__class__.__name__

    if "timeout" in text or "ETIMEDOUT" in text:
        return _TIMEOUT
    if "rate limit" in text or "429" in text:
        return _RATE_LIMITED
    if "authentication" in text or "401" in text or "403" in text:
        return _AUTHENTICATION
    if "network" in text or "ECONNREFUSED" in text or "ENOTFOUND" in text:
        return _NETWORK
    if "empty response" in text:
        return _EMPTY_RESPONSE

    if len(text) > UNCATEGORIZED_MESSAGE_LIMIT:
        text = text[:UNCATEGORIZED_MESSAGE_LIMIT] + "..."
    return ErrorInfo(kind=ErrorKind.UNCATEGORIZED, message=text, suggestion=UNCATEGORIZED_SUGGESTION)


def format_error_status(info: ErrorInfo) -> str:
    """Render the text written into a failed request's status message."""
    return f"Error: {info.message}\n_{info.suggestion}_"

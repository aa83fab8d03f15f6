"""Classification of control-plane failures."""

from __future__ import annotations

from botocore.exceptions import ClientError, ConnectionClosedError
from botocore.exceptions import ConnectionError as BotoConnectionError

from burst.retry import RetryPredicate, any_of, on_exception_message

REQUEST_NOT_FOUND = "InvalidSpotInstanceRequestID.NotFound"
INSTANCE_NOT_FOUND = "InvalidInstanceID.NotFound"


def error_code(e: Exception) -> str | None:
    if isinstance(e, ClientError):
        return e.response.get("Error", {}).get("Code")
    return None


def is_request_not_found(e: Exception) -> bool:
    """The request id is not visible yet (read-after-write lag)."""
    if error_code(e) == REQUEST_NOT_FOUND:
        return True
    msg = str(e)
    return "The spot instance request ID" in msg and "does not exist" in msg


def is_instance_not_found(e: Exception) -> bool:
    return error_code(e) == INSTANCE_NOT_FOUND


is_transient: RetryPredicate = any_of(
    lambda e: isinstance(e, (
        ConnectionResetError, BrokenPipeError, BotoConnectionError, ConnectionClosedError,
    )),
    on_exception_message("connection reset", "broken pipe", "pooled stream disconnected"),
)
"""Dropped connections that are worth repeating the same call for."""

"""Exceptions related to helm-provider.

Every failure surfaced to the invoker is one of the classes below. Errors from
collaborators (AWS, the network, the chart engine) are normalized with
`classify_error` before they reach the controller boundary.
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError

__all__ = [
    "HelmProviderException",
    "ValidationError",
    "NotFoundError",
    "DecodeError",
    "FetchError",
    "ParseError",
    "StageTimeoutError",
    "WrappedExternalError",
    "CommandException",
    "HelmException",
    "classify_error",
]

_LOGGER = logging.getLogger(__name__)


class HelmProviderException(Exception):
    """Generic base exception used for this library."""

    error_code = "GeneralServiceException"
    """Error code reported to the invoker in a failed progress event."""

    retryable = True
    """Whether re-polling the same operation may succeed."""


class NotFoundError(HelmProviderException):
    """Raised when the release tracked by an identifier does not exist."""

    error_code = "NotFound"
    retryable = False


class ValidationError(HelmProviderException):
    """Raised when the request is malformed or contradictory."""

    error_code = "InvalidRequest"
    retryable = False


class DecodeError(HelmProviderException):
    """Raised when an opaque resource identifier can't be decoded."""

    error_code = "InvalidRequest"
    retryable = False


class FetchError(HelmProviderException):
    """Raised when a chart or values document can't be downloaded."""

    error_code = "NetworkFailure"

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Unable to fetch {url}: {message}")
        self.url = url
        self.status_code = status_code


class ParseError(HelmProviderException):
    """Raised when a fetched document is not valid YAML or not a mapping."""

    error_code = "InvalidRequest"


class StageTimeoutError(HelmProviderException):
    """Raised when an operation has run longer than its configured timeout."""

    error_code = "NotStabilized"
    retryable = False

    def __init__(self, elapsed_seconds: float, timeout_seconds: float) -> None:
        super().__init__(
            f"Operation timed out after {elapsed_seconds:.0f}s "
            f"(timeout {timeout_seconds:.0f}s)"
        )
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds


class WrappedExternalError(HelmProviderException):
    """An error raised by an external collaborator, normalized."""

    error_code = "ServiceInternalError"

    def __init__(
        self,
        source: str,
        message: str,
        code: str | None = None,
        origin: str | None = None,
    ) -> None:
        text = f"Error: At {source} - "
        if code:
            text += f"{code}: "
        text += message
        super().__init__(text)
        self.source = source
        self.code = code
        self.message = message
        self.origin = origin


class CommandException(HelmProviderException):
    """Raised when there is a failure running a subcommand."""

    error_code = "ServiceInternalError"


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


def classify_error(source: str, err: Exception) -> HelmProviderException:
    """Normalize an error raised while performing the operation `source`.

    Errors that are already part of this library pass through unchanged so the
    most specific class reaches the invoker.
    """
    if isinstance(err, HelmProviderException):
        return err
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(err))
        origin = err.operation_name
        _LOGGER.error("AWS Error: %s - %s (%s)", code, message, origin)
        if code in ("NoSuchBucket", "NoSuchKey", "404"):
            return FetchError(source, f"{code}: {message}")
        return WrappedExternalError(source, message, code=code, origin=origin)
    if isinstance(err, BotoCoreError):
        _LOGGER.error("AWS Error: %s", err)
        return WrappedExternalError(source, str(err), code=type(err).__name__)
    _LOGGER.error("Error: At %s - %s", source, err)
    return WrappedExternalError(source, str(err), origin=type(err).__name__)

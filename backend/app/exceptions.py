import json
import traceback
from typing import Optional

NO_DETAILS = "No additional details."


class ClipError(Exception):
    """Base class for everything that can go wrong while producing a clip."""

    def __init__(self, message: str, details: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.stderr = stderr


class ClipValidationError(ClipError):
    pass


class ProcessSpawnError(ClipError):
    pass


class ProcessTimeoutError(ClipError):
    pass


class OutputMissingError(ClipError):
    pass


class ProcessExecutionError(ClipError):
    def __init__(self, message: str, returncode: int, stderr: str = ""):
        super().__init__(message, stderr=stderr)
        self.returncode = returncode

    @classmethod
    def from_result(cls, returncode: int, stderr: str) -> "ProcessExecutionError":
        return cls(f"yt-dlp failed with code {returncode}. Stderr: {stderr}", returncode, stderr)


class CredentialError(ProcessExecutionError):
    """yt-dlp was blocked by bot detection or rejected the cookie jar."""

    @classmethod
    def from_result(cls, returncode: int, stderr: str) -> "CredentialError":
        return cls(
            "YouTube bot detection triggered. The cookies file may be expired or invalid.",
            returncode,
            stderr,
        )


def error_message(exc: BaseException) -> str:
    return str(exc) or "Failed to process video."


def error_details(exc: BaseException) -> str:
    # prefer an explicit details string, fall back to captured stderr
    details = getattr(exc, "details", None)
    if isinstance(details, str) and details:
        return details
    stderr = getattr(exc, "stderr", None)
    if isinstance(stderr, str) and stderr:
        return stderr
    return NO_DETAILS


def serialize_error(exc: BaseException) -> str:
    """Dump the exception's type, message, traceback and own attributes as JSON."""
    snapshot = {
        "name": type(exc).__name__,
        "message": error_message(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
    snapshot.update(vars(exc))
    return json.dumps(snapshot, default=str)

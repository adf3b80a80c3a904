# exceptions.py
from typing import Optional


class DarkiboxError(Exception):
    """Base class for every error raised by the darkibox adapter."""

    pass


class PermanentError(DarkiboxError):
    """An error that will not be fixed by a retry (e.g., a missing file)."""

    pass


class TransientError(DarkiboxError):
    """A temporary error (e.g., a network failure) that might resolve on a retry."""

    pass


class OperationCancelled(DarkiboxError):
    """The caller cancelled the operation before it completed."""

    pass


class TransportError(TransientError):
    """Connection failure or timeout talking to the remote."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class RateLimitExceeded(TransientError):
    """The remote kept throttling requests after the retry budget was spent."""

    def __init__(self, message: str, path: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.path = path
        self.attempts = attempts


class RemoteError(PermanentError):
    """The remote answered with a non-2xx status (or an error status in the JSON body)."""

    def __init__(self, status: int, message: str = "", path: Optional[str] = None):
        self.status = status
        self.message = message
        self.path = path
        super().__init__(self._describe())

    def _describe(self) -> str:
        text = f"HTTP {self.status}"
        if self.path:
            text += f" for '{self.path}'"
        if self.message:
            text += f": {self.message}"
        return text


class NotFound(RemoteError, FileNotFoundError):
    pass


class NotADirectory(RemoteError, NotADirectoryError):
    pass


class DirectoryNotEmpty(RemoteError, OSError):
    pass


class DecodeError(PermanentError):
    """The response body was not valid JSON or lacked a required field."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class UnsupportedOperation(PermanentError):
    """The configured remote protocol does not offer this operation."""

    pass


class SizeMismatch(PermanentError):
    """The remote reports a different size than the number of bytes uploaded."""

    def __init__(self, path: str, expected: int, actual: int):
        super().__init__(
            f"Upload of '{path}' is incomplete: expected {expected} bytes, remote has {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual

"""
Error taxonomy for the IP certificate renewal daemon.

Only ConfigError (and failures constructing clients) is fatal to the process.
Everything raised inside a renewal attempt is caught by the scheduler, logged,
and retried on the next tick.
"""
from __future__ import annotations

from typing import Optional


class IpsslError(Exception):
    """Base class for every error raised by this project."""


class ConfigError(IpsslError):
    """Required configuration is missing or malformed."""


class TransportError(IpsslError):
    """The ZeroSSL API (or the Docker daemon) was unreachable or returned an error."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: Optional[int] = None,
        error_type: str = "",
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        self.error_type = error_type
        super().__init__(message)


class NotFoundError(TransportError):
    """The requested certificate or container does not exist."""


class NotIssuedError(TransportError):
    """Download was attempted for a certificate that is not issued yet."""


class NotRunningError(IpsslError):
    """The reload target container exists but is not running."""


class IssuanceFailedError(IpsslError):
    """The authority moved the request into a terminal failure state."""

    def __init__(self, request_id: str, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"certificate {request_id} failed with status: {status}")


class IssuanceTimeoutError(IpsslError):
    """The poll ceiling was reached before the certificate was issued."""


class CancelledError(IpsslError):
    """Shutdown was requested while waiting."""


class FilesystemError(IpsslError):
    """A validation, certificate or key file could not be written."""


class KeyGenError(IpsslError):
    """Local private-key generation failed."""


class CSRError(IpsslError):
    """The certificate signing request could not be built."""

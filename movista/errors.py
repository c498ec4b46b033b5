"""Error kinds raised by the Movista services."""

from __future__ import annotations


class MovistaError(Exception):
    """Base class for every error raised by Movista."""


class UpstreamError(MovistaError):
    """The catalog or suggestion service answered with a failure."""

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (status {self.status_code})"


class UpstreamTimeoutError(UpstreamError):
    """The upstream call did not complete within the configured timeout."""

    def __init__(self, message: str = "Upstream request timed out") -> None:
        super().__init__(None, message)


class MissingCredentialError(MovistaError):
    """No API key is configured for an upstream service."""


class PersistenceReadError(MovistaError):
    """The local key-value store could not be read."""


class PersistenceWriteError(MovistaError):
    """The local key-value store could not be written."""

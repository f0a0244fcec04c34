from __future__ import annotations


class ExtsyncError(Exception):
    """Base class for all extsync domain errors."""


class InvalidExtensionIdError(ValueError, ExtsyncError):
    """Raised when a string is not shaped like ``publisher.name``."""


class CollectorError(RuntimeError, ExtsyncError):
    """Raised when no inventory listing mechanism succeeds for an editor."""


class SyncAbortedError(RuntimeError, ExtsyncError):
    """Raised when a synchronization run cannot continue."""


class VersionNotFoundError(LookupError, ExtsyncError):
    """Raised when the Marketplace has no matching extension or version."""


class DownloadError(ConnectionError, ExtsyncError):
    """Raised when an artifact download fails after all retries."""


class InvalidArtifactError(ValueError, ExtsyncError):
    """Raised when downloaded bytes are not a valid extension package."""


class InstallRejected(RuntimeError, ExtsyncError):
    """Raised when the editor CLI reports an installation failure."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class DependencyUnresolved(RuntimeError, ExtsyncError):
    """Raised when a required dependency could not be installed."""


class MaxDepthExceeded(RuntimeError, ExtsyncError):
    """Raised when dependency resolution would exceed the depth bound."""

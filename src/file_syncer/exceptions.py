"""Exceptions for file-syncer."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""

    stage = "sync"


class ConfigError(SyncError):
    """Raised when a :class:`~file_syncer.config.SyncConfig` is invalid."""

    stage = "config"


class ScanError(SyncError):
    """Raised when a scan root is missing or is not a directory."""

    stage = "scan"


class PerFileReadError(SyncError):
    """A single file could not be read.

    Never aborts a sync; scanners and the orchestrator record it as a
    warning and move on to the next file.
    """

    stage = "read"

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        self.reason = str(cause)
        super().__init__(f"{path}: {cause}")


class CodecError(SyncError):
    """Raised when stored data cannot be decoded (corrupt zstd frame)."""

    stage = "codec"

    def __init__(self, path: str, message: str):
        self.path = path
        self.reason = message
        super().__init__(f"{path}: {message}")


class BackendError(SyncError):
    """A version-control operation failed.

    Attributes:
        stage: Backend operation that failed (``"clone"``, ``"fetch"``,
            ``"commit"``, ``"push"``).
        cause: The underlying exception.
    """

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")


class LockContentionError(SyncError):
    """Raised when another sync already holds the working-copy lock."""

    stage = "lock"

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        super().__init__(
            f"working copy is locked by another sync ({lock_path})"
        )

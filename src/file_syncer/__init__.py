from .codec import Codec, CompressionLevel, CompressionPolicy, StorageKind, ZSTD_SUFFIX, decode, encode
from .config import RemoteConfig, SyncConfig, SyncMode, validate_config
from .scanner import FileDescriptor, FileIssue, FileTreeSnapshot, scan_tree
from .diff import Change, ChangeKind, ChangeSet, diff
from .message import CommitMessage, format_commit_message, generate_commit_message
from .backend import DulwichBackend, VersionControlBackend, WorkingCopy
from .orchestrator import SyncOrchestrator, SyncResult, SyncState, sync
from .exceptions import (
    BackendError, CodecError, ConfigError, LockContentionError,
    PerFileReadError, ScanError, SyncError,
)

__all__ = [
    "Codec", "CompressionLevel", "CompressionPolicy", "StorageKind", "ZSTD_SUFFIX",
    "encode", "decode",
    "RemoteConfig", "SyncConfig", "SyncMode", "validate_config",
    "FileDescriptor", "FileIssue", "FileTreeSnapshot", "scan_tree",
    "Change", "ChangeKind", "ChangeSet", "diff",
    "CommitMessage", "format_commit_message", "generate_commit_message",
    "DulwichBackend", "VersionControlBackend", "WorkingCopy",
    "SyncOrchestrator", "SyncResult", "SyncState", "sync",
    "BackendError", "CodecError", "ConfigError", "LockContentionError",
    "PerFileReadError", "ScanError", "SyncError",
]

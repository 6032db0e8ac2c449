"""Resolved configuration for a single sync invocation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .codec import CompressionPolicy
from .diff import ChangeSet
from .exceptions import ConfigError
from .message import format_commit_message


class SyncMode(str, Enum):
    """Direction of a sync: ``PUSH`` (local → remote) or ``PULL``."""
    PUSH = "push"
    PULL = "pull"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass(frozen=True)
class RemoteConfig:
    """Where the working copy comes from.

    Attributes:
        url: Repository URL or local path.
        branch: Branch to sync with.
        ssh_key_path: Private key for SSH remotes, or ``None``.
    """
    url: str
    branch: str = "main"
    ssh_key_path: str | None = None


@dataclass(frozen=True)
class SyncConfig:
    """Everything the sync engine needs, passed explicitly.

    Attributes:
        mode: :class:`SyncMode`.
        local_root: Local directory being synced.
        working_copy_root: Checkout of the remote repository.
        compression: Write-side :class:`CompressionPolicy`.
        remote: :class:`RemoteConfig` for the backend.
        exclude: Gitignore-style patterns excluded from local scans.
        dry_run: Compute and report changes without writing anything.
        message_template: Custom commit subject (see
            :func:`~file_syncer.message.format_commit_message`).
        backend_timeout: Seconds allowed per backend call, or ``None``.
        workers: Fingerprint threads, or ``None`` for the default.
    """
    mode: SyncMode
    local_root: Path
    working_copy_root: Path
    compression: CompressionPolicy = field(default_factory=CompressionPolicy.disabled)
    remote: RemoteConfig | None = None
    exclude: tuple[str, ...] = ()
    dry_run: bool = False
    message_template: str | None = None
    backend_timeout: float | None = None
    workers: int | None = None


def validate_config(config: SyncConfig) -> None:
    """Reject configurations the engine cannot run.

    Raises:
        ConfigError: On the first problem found.
    """
    if not isinstance(config.mode, SyncMode):
        raise ConfigError("mode must be either 'push' or 'pull'")
    if not str(config.local_root).strip():
        raise ConfigError("folder path is required")
    if not str(config.working_copy_root).strip():
        raise ConfigError("working copy path is required")
    if os.path.realpath(config.local_root) == os.path.realpath(config.working_copy_root):
        raise ConfigError("folder and working copy must be different directories")
    remote = config.remote
    if remote is not None:
        if not remote.url.strip():
            raise ConfigError("repository URL is required")
        if not remote.branch.strip():
            raise ConfigError("branch is required")
        if remote.ssh_key_path is not None and not os.path.isfile(remote.ssh_key_path):
            raise ConfigError(f"SSH key not found: {remote.ssh_key_path}")
    if config.backend_timeout is not None and config.backend_timeout <= 0:
        raise ConfigError("timeout must be positive")
    if config.workers is not None and config.workers < 1:
        raise ConfigError("workers must be at least 1")
    if config.message_template:
        # Render once now so a bad template fails before any file is written
        format_commit_message(ChangeSet(), config.message_template)

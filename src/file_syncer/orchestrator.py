"""End-to-end push/pull driver.

A sync moves through ``IDLE → SCANNED → DIFFED → APPLIED → (push:
COMMITTED) → DONE``.  Any fatal error moves it to ``FAILED`` and is
re-raised; file writes already applied are left in place, and running
the sync again converges because diffing is idempotent.
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, TypeVar

from ._exclude import ExcludeFilter
from ._lock import working_copy_lock
from .backend import VersionControlBackend, WorkingCopy
from .codec import Codec, StorageKind, logical_path_for, stored_path_for
from .config import SyncConfig, SyncMode, validate_config
from .diff import ChangeSet, diff
from .exceptions import BackendError, CodecError, PerFileReadError, ScanError
from .message import CommitMessage, format_commit_message
from .scanner import FileDescriptor, FileIssue, FileTreeSnapshot, scan_tree

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncState(str, Enum):
    """Stage a sync has reached."""
    IDLE = "idle"
    SCANNED = "scanned"
    DIFFED = "diffed"
    APPLIED = "applied"
    COMMITTED = "committed"
    DONE = "done"
    FAILED = "failed"

    def __str__(self) -> str:          # noqa: D105
        return self.value


@dataclass
class SyncResult:
    """Outcome of :meth:`SyncOrchestrator.run`.

    Attributes:
        mode: Direction of the sync.
        state: Final :class:`SyncState` (``DONE`` unless failed).
        changes: The computed :class:`ChangeSet`.
        message: Commit message used (push with changes only).
        commit_id: Commit created by the backend, if any.
        warnings: Non-fatal per-file problems from scans and apply.
    """
    mode: SyncMode
    state: SyncState = SyncState.IDLE
    changes: ChangeSet = field(default_factory=ChangeSet)
    message: CommitMessage | None = None
    commit_id: str | None = None
    warnings: list[FileIssue] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.message is not None


class SyncOrchestrator:
    """Runs one push or pull described by a :class:`SyncConfig`.

    Args:
        backend: Version-control backend owning the working copy.
        config: Fully resolved configuration.
    """

    def __init__(self, backend: VersionControlBackend, config: SyncConfig):
        self.backend = backend
        self.config = config
        self.codec = Codec(config.compression)
        self.exclude = ExcludeFilter(config.exclude) if config.exclude else None
        self.state = SyncState.IDLE

    def __repr__(self) -> str:
        return f"SyncOrchestrator({self.config.mode}, state={self.state})"

    # -- state ---------------------------------------------------------------

    def _advance(self, state: SyncState) -> None:
        logger.debug("%s -> %s", self.state, state)
        self.state = state

    # -- backend -------------------------------------------------------------

    def _backend_call(self, stage: str, fn: Callable[..., T], *args) -> T:
        """Run a backend call, bounded by ``config.backend_timeout``.

        Every failure surfaces as :class:`BackendError` tagged with *stage*.
        Timed-out calls are not retried.
        """
        timeout = self.config.backend_timeout
        try:
            if timeout is None:
                return fn(*args)
            pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"backend-{stage}")
            try:
                future = pool.submit(fn, *args)
                try:
                    return future.result(timeout=timeout)
                except FutureTimeoutError as exc:
                    raise BackendError(
                        stage, TimeoutError(f"{stage} timed out after {timeout}s"),
                    ) from exc
            finally:
                pool.shutdown(wait=False)
        except BackendError:
            raise
        except Exception as exc:
            raise BackendError(stage, exc) from exc

    # -- run -----------------------------------------------------------------

    def run(self) -> SyncResult:
        """Execute the sync and return its :class:`SyncResult`.

        Raises:
            ConfigError, ScanError, BackendError, LockContentionError: On
                fatal failures; the orchestrator is then ``FAILED``.
        """
        config = self.config
        result = SyncResult(mode=config.mode)
        logger.info(
            "File syncer started: mode=%s, folder=%s, working copy=%s, compression=%s",
            config.mode, config.local_root, config.working_copy_root, config.compression,
        )
        try:
            validate_config(config)
            wc = self._prepare_working_copy()
            with working_copy_lock(str(wc.root)):
                if config.mode == SyncMode.PUSH:
                    self._push(wc, result)
                else:
                    self._pull(wc, result)
        except Exception:
            self._advance(SyncState.FAILED)
            result.state = self.state
            raise

        self._advance(SyncState.DONE)
        result.state = self.state
        for issue in result.warnings:
            logger.warning("Skipped %s", issue)
        logger.info("%s completed: %s", str(config.mode).capitalize(),
                    format_commit_message(result.changes).subject)
        return result

    def _prepare_working_copy(self) -> WorkingCopy:
        config = self.config
        if config.remote is None:
            root = Path(config.working_copy_root)
            if not root.is_dir():
                raise ScanError(f"working copy does not exist: {root}")
            return WorkingCopy(root=root, remote=None)
        # Only push may start a branch the remote does not have yet
        return self._backend_call(
            "clone", self.backend.clone_or_open, config.remote,
            Path(config.working_copy_root), config.mode == SyncMode.PUSH,
        )

    def _fetch(self, wc: WorkingCopy) -> str | None:
        if wc.remote is None:
            logger.debug("No remote configured; using %s as is", wc.root)
            return None
        return self._backend_call("fetch", self.backend.fetch_latest, wc)

    def _scan(self, local_first: bool) -> tuple[FileTreeSnapshot, FileTreeSnapshot]:
        config = self.config
        local = scan_tree(config.local_root, exclude=self.exclude, workers=config.workers)
        repo = scan_tree(config.working_copy_root, codec=self.codec, workers=config.workers)
        self._advance(SyncState.SCANNED)
        return (local, repo) if local_first else (repo, local)

    def _diff(self, source: FileTreeSnapshot, destination: FileTreeSnapshot,
              result: SyncResult) -> ChangeSet:
        result.warnings.extend(source.warnings)
        result.warnings.extend(destination.warnings)
        changes = diff(source, destination)
        # A source file that could not be read is not a deletion.
        for issue in source.warnings:
            for path in {issue.path, logical_path_for(issue.path)}:
                if path in changes.deleted:
                    logger.warning("Keeping %s: unreadable in source", path)
                    changes.deleted.discard(path)
        if self.config.mode == SyncMode.PULL and self.exclude is not None:
            # Excluded local files are never overwritten by a pull
            for path in [p for p in changes.added if self.exclude.excludes_path(p)]:
                logger.debug("Leaving excluded %s untouched", path)
                del changes.added[path]
            for path in [p for p in changes.modified if self.exclude.excludes_path(p)]:
                logger.debug("Leaving excluded %s untouched", path)
                del changes.modified[path]
        result.changes = changes
        self._advance(SyncState.DIFFED)
        logger.info("Detected %d added, %d modified, %d deleted",
                    len(changes.added), len(changes.modified), len(changes.deleted))
        for action in changes.actions():
            logger.debug("%s %s", action.kind.marker, action.path)
        return changes

    # -- push ----------------------------------------------------------------

    def _push(self, wc: WorkingCopy, result: SyncResult) -> None:
        logger.info("Starting push operation")
        local = Path(self.config.local_root)
        if not local.is_dir():
            raise ScanError(f"folder does not exist: {local}")
        # Diff against the remote tip, not a leftover unpushed commit.
        self._fetch(wc)

        source, destination = self._scan(local_first=True)
        changes = self._diff(source, destination, result)
        if self.config.dry_run:
            return

        repo = Path(wc.root)
        # Deletes first so file/directory swaps are cleared before writes.
        for path in changes.sorted_deleted():
            # Both variants, so a shadowed copy does not linger
            for variant in _stored_variants(path):
                _remove_file(repo, variant, result)
        for desc in changes.added.values():
            self._write_stored(local, repo, desc, result)
        for _old, new in changes.modified.values():
            self._write_stored(local, repo, new, result)
        self._advance(SyncState.APPLIED)

        if changes.is_empty:
            logger.info("No changes to push")
            return

        message = format_commit_message(changes, self.config.message_template)
        logger.info("Committing changes: %s", message.subject)
        result.commit_id = self._backend_call("commit", self.backend.commit, wc, str(message))
        result.message = message
        self._advance(SyncState.COMMITTED)
        logger.info("Pushing changes")
        self._backend_call("push", self.backend.push, wc)
        logger.info("Push completed successfully")

    def _write_stored(self, local: Path, repo: Path, desc: FileDescriptor,
                      result: SyncResult) -> None:
        """Encode local ``desc.path`` into the working copy."""
        try:
            try:
                content = (local / desc.path).read_bytes()
            except OSError as exc:
                raise PerFileReadError(desc.path, exc) from exc
            stored, stored_path = self.codec.encode(content, desc.path)
            _write_file(repo, stored_path, stored)
            # Drop the other representation: a previous or shadowed variant
            for variant in _stored_variants(desc.path):
                if variant != stored_path:
                    (repo / variant).unlink(missing_ok=True)
        except PerFileReadError as exc:
            result.warnings.append(FileIssue(exc.path, exc.reason))
        except OSError as exc:
            result.warnings.append(FileIssue(desc.path, str(exc)))

    # -- pull ----------------------------------------------------------------

    def _pull(self, wc: WorkingCopy, result: SyncResult) -> None:
        logger.info("Starting pull operation")
        if self._fetch(wc) is None and wc.remote is not None:
            # Mirroring a missing branch would empty the local folder
            raise BackendError(
                "fetch", LookupError(f"remote has no branch {wc.remote.branch!r}"),
            )
        local = Path(self.config.local_root)
        if local.exists() and not local.is_dir():
            raise ScanError(f"folder is not a directory: {local}")
        if self.config.dry_run and not local.exists():
            source = scan_tree(wc.root, codec=self.codec, workers=self.config.workers)
            self._advance(SyncState.SCANNED)
            self._diff(source, FileTreeSnapshot(str(local)), result)
            return
        local.mkdir(parents=True, exist_ok=True)

        source, destination = self._scan(local_first=False)
        changes = self._diff(source, destination, result)
        if self.config.dry_run:
            return

        repo = Path(wc.root)
        for path in changes.sorted_deleted():
            _remove_file(local, path, result)
        for desc in changes.added.values():
            self._write_logical(repo, local, desc, result)
        for _old, new in changes.modified.values():
            self._write_logical(repo, local, new, result)
        self._advance(SyncState.APPLIED)
        logger.info("Pull completed successfully")

    def _write_logical(self, repo: Path, local: Path, desc: FileDescriptor,
                       result: SyncResult) -> None:
        """Decode stored ``desc`` from the working copy into the local tree."""
        try:
            stored = (repo / desc.stored_path).read_bytes()
            content, logical = self.codec.decode(stored, desc.stored_path)
            _write_file(local, logical, content)
        except CodecError as exc:
            result.warnings.append(FileIssue(exc.path, exc.reason))
        except OSError as exc:
            result.warnings.append(FileIssue(desc.path, str(exc)))


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def _write_file(base: Path, rel: str, data: bytes) -> None:
    """Write *data* to ``base/rel``, clearing whatever blocks the path."""
    out = base / rel
    # If out is a directory but we need a file there, remove the tree
    if out.is_dir() and not out.is_symlink():
        shutil.rmtree(out)
    # If a parent component is a file, remove it
    for parent in out.parents:
        if parent == base:
            break
        if parent.exists() and not parent.is_dir():
            parent.unlink()
            break
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)


def _stored_variants(path: str) -> tuple[str, str]:
    """Raw and zstd stored names of logical *path*."""
    return stored_path_for(path, StorageKind.RAW), stored_path_for(path, StorageKind.ZSTD)


def _remove_file(base: Path, rel: str, result: SyncResult) -> None:
    target = base / rel
    try:
        target.unlink(missing_ok=True)
    except OSError as exc:
        result.warnings.append(FileIssue(rel, str(exc)))
        return
    _prune_empty_dirs(base, target.parent)


def _prune_empty_dirs(base: Path, start: Path) -> None:
    """Remove *start* and its ancestors below *base* while they are empty."""
    current = start
    while current != base and base in current.parents:
        try:
            current.rmdir()  # only succeeds if truly empty
        except OSError:
            return
        current = current.parent


def sync(backend: VersionControlBackend, config: SyncConfig) -> SyncResult:
    """Run a single sync; shortcut for ``SyncOrchestrator(...).run()``."""
    return SyncOrchestrator(backend, config).run()

"""Directory scanning into canonical, ordered file tree snapshots."""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from ._lock import LOCK_FILE_NAME
from .codec import Codec, StorageKind, storage_of, stored_path_for
from .exceptions import CodecError, PerFileReadError, ScanError

if TYPE_CHECKING:
    from ._exclude import ExcludeFilter

logger = logging.getLogger(__name__)

METADATA_DIR = ".git"

_HASH_CHUNK_SIZE = 65536


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileDescriptor:
    """One regular file of a scanned tree.

    Attributes:
        path: Logical relative path (forward slashes).
        fingerprint: Git blob SHA-1 (hex) of the logical content.
        size: Logical content size in bytes.
        storage: How the file is stored on disk.
    """
    path: str
    fingerprint: str
    size: int
    storage: StorageKind = StorageKind.RAW

    @property
    def stored_path(self) -> str:
        """Relative path of the file as it exists on disk."""
        return stored_path_for(self.path, self.storage)


@dataclass(frozen=True)
class FileIssue:
    """A file skipped during a scan or an apply step."""
    path: str
    error: str

    def __str__(self) -> str:
        return f"{self.path}: {self.error}"


def path_key(path: str) -> bytes:
    """Sort key giving byte-wise lexicographic order of relative paths."""
    return path.encode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class FileTreeSnapshot:
    """Immutable list of :class:`FileDescriptor`, sorted byte-wise by path."""
    root: str
    files: tuple[FileDescriptor, ...] = ()
    warnings: tuple[FileIssue, ...] = ()
    _index: dict[str, FileDescriptor] = field(
        default_factory=dict, init=False, repr=False, compare=False,
    )

    def __post_init__(self):
        keys = [path_key(f.path) for f in self.files]
        if any(a >= b for a, b in zip(keys, keys[1:])):
            raise ValueError("snapshot files must be sorted and unique by path")
        self._index.update((f.path, f) for f in self.files)

    @classmethod
    def from_files(cls, root: str, files, warnings=()) -> FileTreeSnapshot:
        """Build a snapshot from descriptors in any order."""
        ordered = tuple(sorted(files, key=lambda f: path_key(f.path)))
        return cls(root=root, files=ordered, warnings=tuple(warnings))

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[FileDescriptor]:
        return iter(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self._index

    def get(self, path: str) -> FileDescriptor | None:
        return self._index.get(path)

    def paths(self) -> list[str]:
        return [f.path for f in self.files]


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------

def _blob_hasher(size: int):
    """Return a SHA-1 hasher pre-loaded with the git blob header.

    Git blob OID = SHA-1(``blob <size>\\0`` + content).
    """
    return hashlib.sha1(f"blob {size}\0".encode())


def fingerprint_bytes(content: bytes) -> str:
    """Return the fingerprint of in-memory logical *content*."""
    h = _blob_hasher(len(content))
    h.update(content)
    return h.hexdigest()


def _fingerprint_raw(full: Path, size: int) -> str:
    """Stream a raw file through SHA-1 without loading it whole."""
    h = _blob_hasher(size)
    read = 0
    with open(full, "rb") as f:
        while True:
            chunk = f.read(_HASH_CHUNK_SIZE)
            if not chunk:
                break
            read += len(chunk)
            h.update(chunk)
    if read != size:
        raise OSError(f"file changed size while reading ({size} -> {read} bytes)")
    return h.hexdigest()


def _describe(base: Path, stored_rel: str, codec: Codec | None) -> FileDescriptor:
    try:
        return _describe_file(base, stored_rel, codec)
    except OSError as exc:
        raise PerFileReadError(stored_rel, exc) from exc


def _describe_file(base: Path, stored_rel: str, codec: Codec | None) -> FileDescriptor:
    full = base / stored_rel
    storage = storage_of(stored_rel) if codec is not None else StorageKind.RAW
    if storage == StorageKind.RAW:
        size = full.stat().st_size
        return FileDescriptor(stored_rel, _fingerprint_raw(full, size), size)
    content, logical = codec.decode(full.read_bytes(), stored_rel)
    return FileDescriptor(logical, fingerprint_bytes(content), len(content), storage)


# ---------------------------------------------------------------------------
# Walking
# ---------------------------------------------------------------------------

def _walk_regular_files(base: Path, exclude: ExcludeFilter | None) -> list[str]:
    """Return relative paths of regular files under *base*.

    Skips ``.git`` directories at any depth, the lock file at the root,
    symlinks, and special files.  Symlinked directories are not descended
    into.
    """
    result: list[str] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dp = Path(dirpath)
        rel_dir = dp.relative_to(base).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        kept = []
        for dname in dirnames:
            if dname == METADATA_DIR:
                continue
            if (dp / dname).is_symlink():
                continue
            if exclude is not None and exclude.is_excluded(prefix + dname, is_dir=True):
                continue
            kept.append(dname)
        dirnames[:] = kept

        for fname in filenames:
            if not prefix and fname == LOCK_FILE_NAME:
                continue
            rel = prefix + fname
            try:
                mode = os.lstat(dp / fname).st_mode
            except OSError:
                # Vanished between listing and stat
                continue
            if not stat.S_ISREG(mode):
                continue
            if exclude is not None and exclude.is_excluded(rel):
                continue
            result.append(rel)
    return result


def _resolve_duplicates(
    described: list[FileDescriptor], codec: Codec | None, warnings: list[FileIssue],
) -> list[FileDescriptor]:
    """Keep one descriptor per logical path.

    A working copy can hold both ``x`` and ``x-zstd``; the variant matching
    the codec's current write representation wins.
    """
    by_path: dict[str, FileDescriptor] = {}
    preferred = codec.storage if codec is not None else StorageKind.RAW
    for desc in described:
        other = by_path.get(desc.path)
        if other is None:
            by_path[desc.path] = desc
            continue
        keep, drop = (desc, other) if desc.storage == preferred else (other, desc)
        by_path[desc.path] = keep
        warnings.append(FileIssue(
            drop.stored_path, f"shadowed by {keep.stored_path}; ignoring",
        ))
    return list(by_path.values())


def scan_tree(
    root: str | os.PathLike,
    *,
    codec: Codec | None = None,
    exclude: ExcludeFilter | None = None,
    workers: int | None = None,
) -> FileTreeSnapshot:
    """Scan *root* into a :class:`FileTreeSnapshot`.

    Args:
        root: Directory to scan.
        codec: When given, the tree is a working copy: names carrying the
            zstd suffix are decoded and fingerprinted on their logical
            content.  When ``None`` every file is taken as raw.
        exclude: Optional exclude filter for the walk.
        workers: Fingerprint threads (default: ``ThreadPoolExecutor``'s).

    Raises:
        ScanError: *root* does not exist or is not a directory.
    """
    base = Path(root)
    if not base.exists():
        raise ScanError(f"scan root does not exist: {base}")
    if not base.is_dir():
        raise ScanError(f"scan root is not a directory: {base}")

    stored_paths = _walk_regular_files(base, exclude)
    warnings: list[FileIssue] = []
    described: list[FileDescriptor] = []

    def _task(rel: str) -> FileDescriptor | FileIssue:
        try:
            return _describe(base, rel, codec)
        except (CodecError, PerFileReadError) as exc:
            return FileIssue(exc.path, exc.reason)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        for outcome in pool.map(_task, stored_paths):
            if isinstance(outcome, FileIssue):
                warnings.append(outcome)
            else:
                described.append(outcome)

    files = _resolve_duplicates(described, codec, warnings)
    snapshot = FileTreeSnapshot.from_files(str(base), files, sorted(
        warnings, key=lambda w: path_key(w.path),
    ))
    logger.debug("Scanned %s: %d files, %d warnings", base, len(snapshot), len(warnings))
    return snapshot

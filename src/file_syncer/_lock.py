"""Advisory working-copy lock: one sync per working copy, fail fast on contention."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager

from .exceptions import LockContentionError

LOCK_FILE_NAME = ".file-syncer.lock"

# Per-process threading locks, keyed by resolved working-copy path
_thread_locks: dict[tuple[int, int] | str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _get_thread_lock(root: str) -> threading.Lock:
    real = os.path.realpath(root)
    try:
        st = os.stat(real)
        key: tuple[int, int] | str = (st.st_dev, st.st_ino)
        if st.st_ino == 0:
            key = os.path.normcase(real)
    except OSError:
        key = os.path.normcase(real)
    with _thread_locks_guard:
        if key not in _thread_locks:
            _thread_locks[key] = threading.Lock()
        return _thread_locks[key]


def lock_path(root: str) -> str:
    """Return the lock file location for the working copy at *root*.

    The lock lives inside ``.git`` when the working copy has one, so it
    never shows up as a file to sync.
    """
    git_dir = os.path.join(root, ".git")
    if os.path.isdir(git_dir):
        return os.path.join(git_dir, LOCK_FILE_NAME)
    return os.path.join(root, LOCK_FILE_NAME)


try:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

    def _open_lock_file(path: str) -> int:
        return os.open(path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0))

except ImportError:
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

    def _open_lock_file(path: str) -> int:
        fd = os.open(path, os.O_CREAT | os.O_RDWR)
        os.set_inheritable(fd, False)
        return fd


@contextmanager
def working_copy_lock(root: str):
    """Hold the advisory lock on *root* for the duration of the block.

    Raises :class:`LockContentionError` immediately if the lock is held,
    by another thread in this process or by another process.
    """
    path = lock_path(root)
    tlock = _get_thread_lock(root)
    if not tlock.acquire(blocking=False):
        raise LockContentionError(path)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd = _open_lock_file(path)
        try:
            if not _try_lock(fd):
                raise LockContentionError(path)
            try:
                yield path
            finally:
                _unlock(fd)
        finally:
            os.close(fd)
    finally:
        tlock.release()

"""Shared fixtures for file-syncer tests."""

import logging
import os
import threading
from pathlib import Path

import pytest
from click.testing import CliRunner
from dulwich.object_store import iter_tree_contents
from dulwich.objects import Blob, Commit, Tree
from dulwich.repo import Repo

from file_syncer.backend import WorkingCopy
from file_syncer.codec import CompressionPolicy
from file_syncer.config import RemoteConfig, SyncConfig, SyncMode
from file_syncer.exceptions import BackendError


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

def tree_files(root):
    """Return ``{relative path: bytes}`` for every file under *root*, minus ``.git``."""
    root = Path(root)
    found = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d != ".git"]
        for name in filenames:
            full = Path(dirpath) / name
            found[full.relative_to(root).as_posix()] = full.read_bytes()
    return found


def write_tree(root, files):
    """Create *files* (``{relative path: bytes | str}``) under *root*."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    for rel, data in files.items():
        full = root / rel
        full.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            data = data.encode()
        full.write_bytes(data)
    return root


class FakeBackend:
    """Backend keeping the "remote" as a dict of stored path -> bytes.

    ``commit`` snapshots the working copy; ``push`` publishes the last
    snapshot.  Every call is recorded for assertions.  With
    ``has_branch=False`` the remote behaves as if the branch is missing.
    """

    def __init__(self, remote=None, *, has_branch=True):
        self.remote = dict(remote or {})
        self.has_branch = has_branch
        self.calls = []
        self.messages = []
        self._staged = None

    def clone_or_open(self, remote, root, create_branch=True):
        self.calls.append("clone_or_open")
        root = Path(root)
        if not (root / ".git").is_dir():
            if not (self.has_branch or create_branch):
                raise BackendError("clone", LookupError("remote has no branch"))
            (root / ".git").mkdir(parents=True)
            self._checkout(root)
        return WorkingCopy(root=root, remote=remote)

    def fetch_latest(self, wc):
        self.calls.append("fetch_latest")
        if not self.has_branch:
            return None
        self._checkout(wc.root)
        return f"tip{len(self.messages)}"

    def commit(self, wc, message):
        self.calls.append("commit")
        self._staged = tree_files(wc.root)
        self.messages.append(message)
        return f"c{len(self.messages)}"

    def push(self, wc):
        self.calls.append("push")
        self.remote = dict(self._staged)

    def _checkout(self, root):
        for rel in tree_files(root):
            if rel not in self.remote:
                (root / rel).unlink()
        write_tree(root, self.remote)


class BlockingBackend(FakeBackend):
    """FakeBackend whose *stage* call waits until ``release`` is set."""

    def __init__(self, stage, remote=None):
        super().__init__(remote)
        self.stage = stage
        self.entered = threading.Event()
        self.release = threading.Event()

    def _block(self):
        self.entered.set()
        self.release.wait(10)

    def commit(self, wc, message):
        if self.stage == "commit":
            self._block()
        return super().commit(wc, message)

    def push(self, wc):
        if self.stage == "push":
            self._block()
        super().push(wc)


class FailingBackend(FakeBackend):
    """FakeBackend whose *stage* call raises ``RuntimeError``."""

    def __init__(self, stage, remote=None):
        super().__init__(remote)
        self.stage = stage

    def fetch_latest(self, wc):
        if self.stage == "fetch":
            raise RuntimeError("network unreachable")
        return super().fetch_latest(wc)

    def push(self, wc):
        if self.stage == "push":
            raise RuntimeError("remote rejected")
        super().push(wc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers installed by init_logging so they never outlive a test."""
    yield
    logger = logging.getLogger("file_syncer")
    for handler in list(logger.handlers):
        if getattr(handler, "_file_syncer", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def local_dir(tmp_path):
    """A local directory with a.txt and b.txt."""
    return write_tree(tmp_path / "local", {"a.txt": "hi", "b.txt": "bye"})


@pytest.fixture
def wc_dir(tmp_path):
    """Path for a not-yet-created working copy."""
    return tmp_path / "wc"


@pytest.fixture
def make_config(tmp_path):
    """Factory for a :class:`SyncConfig` rooted in tmp_path."""
    def _make(mode=SyncMode.PUSH, *, compress=False, local=None, wc=None, **kwargs):
        remote = kwargs.pop("remote", RemoteConfig(url="fake://remote"))
        return SyncConfig(
            mode=mode,
            local_root=Path(local or tmp_path / "local"),
            working_copy_root=Path(wc or tmp_path / "wc"),
            compression=CompressionPolicy.zstd() if compress else CompressionPolicy.disabled(),
            remote=remote,
            **kwargs,
        )
    return _make


# ---------------------------------------------------------------------------
# Real git remotes
# ---------------------------------------------------------------------------

def seed_bare_repo(path, files, branch=b"main"):
    """Create a bare repository at *path* with one commit holding flat *files*."""
    repo = Repo.init_bare(str(path), mkdir=True)
    tree = Tree()
    for name, data in files.items():
        blob = Blob.from_string(data)
        repo.object_store.add_object(blob)
        tree.add(name.encode(), 0o100644, blob.id)
    repo.object_store.add_object(tree)

    commit = Commit()
    commit.tree = tree.id
    commit.author = commit.committer = b"seed <seed@example.com>"
    commit.author_time = commit.commit_time = 1700000000
    commit.author_timezone = commit.commit_timezone = 0
    commit.encoding = b"UTF-8"
    commit.message = b"seed\n"
    repo.object_store.add_object(commit)

    repo.refs[b"refs/heads/" + branch] = commit.id
    repo.refs.set_symbolic_ref(b"HEAD", b"refs/heads/" + branch)
    repo.close()
    return str(path)


def remote_files(path, branch=b"main"):
    """Return ``{path: bytes}`` of the tip of *branch* in the repo at *path*."""
    with Repo(str(path)) as repo:
        commit = repo[repo.refs[b"refs/heads/" + branch]]
        return {
            entry.path.decode(): repo[entry.sha].data
            for entry in iter_tree_contents(repo.object_store, commit.tree)
        }


def remote_message(path, branch=b"main"):
    with Repo(str(path)) as repo:
        return repo[repo.refs[b"refs/heads/" + branch]].message.decode()


@pytest.fixture
def bare_remote(tmp_path):
    """A bare repository on 'main' with a.txt ("old") and gone.txt."""
    return seed_bare_repo(tmp_path / "remote.git", {
        "a.txt": b"old",
        "gone.txt": b"bye",
    })

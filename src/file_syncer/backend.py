"""Version-control backends: the interface the engine consumes, and dulwich.

The engine never runs git itself.  It talks to a
:class:`VersionControlBackend`, which owns the working copy and every
network operation.  :class:`DulwichBackend` implements it with dulwich's
porcelain, so no ``git`` executable is needed.
"""

from __future__ import annotations

import io
import logging
import os
import re
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from dulwich import porcelain
from dulwich.object_store import iter_tree_contents
from dulwich.repo import Repo

from .config import RemoteConfig
from .exceptions import BackendError

logger = logging.getLogger(__name__)

AUTHOR = b"file-syncer <file-syncer@localhost>"

_SCP_LIKE = re.compile(r"^[^/:@]+@[^/:]+:")


@dataclass(frozen=True)
class WorkingCopy:
    """Handle on a checked-out working copy.

    Attributes:
        root: Directory holding the checkout.
        remote: Remote the checkout tracks (``None`` for a checkout
            prepared outside the backend).
    """
    root: Path
    remote: RemoteConfig | None = None


class VersionControlBackend(Protocol):
    """Operations the sync engine delegates to version control.

    Implementations raise :class:`~file_syncer.exceptions.BackendError`
    (or any exception, which the orchestrator wraps) on failure.
    """

    def clone_or_open(self, remote: RemoteConfig, root: Path,
                      create_branch: bool = True) -> WorkingCopy:
        """Return a working copy of *remote* at *root*, cloning if needed.

        When the remote has no such branch, start it from the default
        branch if *create_branch* is true, else fail.
        """
        ...

    def fetch_latest(self, wc: WorkingCopy) -> str | None:
        """Update *wc* in place to the latest state of its branch.

        Returns the branch tip, or ``None`` if the remote lacks the branch.
        """
        ...

    def commit(self, wc: WorkingCopy, message: str) -> str | None:
        """Stage every change in *wc* and commit it; return the commit id."""
        ...

    def push(self, wc: WorkingCopy) -> None:
        """Publish the branch of *wc* to its remote."""
        ...


# ---------------------------------------------------------------------------
# SSH
# ---------------------------------------------------------------------------

def build_git_ssh_command(ssh_key_path: str) -> str:
    """Return an ssh command line using only *ssh_key_path* for auth."""
    return (
        f"ssh -i {shlex.quote(ssh_key_path)} "
        "-o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
    )


def is_ssh_url(url: str) -> bool:
    """True for ``ssh://`` URLs and scp-like ``user@host:path`` locations."""
    return url.startswith(("ssh://", "git+ssh://")) or bool(_SCP_LIKE.match(url))


# ---------------------------------------------------------------------------
# dulwich
# ---------------------------------------------------------------------------

def _branch_ref(branch: str) -> bytes:
    return b"refs/heads/" + branch.encode("utf-8")


def _as_bytes(path: str | bytes) -> bytes:
    return path if isinstance(path, bytes) else os.fsencode(path)


def _prune_empty_dirs(root: Path, start: Path) -> None:
    """Remove *start* and its parents below *root* while they are empty."""
    while start != root and root in start.parents:
        try:
            start.rmdir()
        except OSError:
            return
        start = start.parent


def _require_remote(wc: WorkingCopy, stage: str) -> None:
    if wc.remote is None:
        raise BackendError(stage, ValueError(f"no remote configured for {wc.root}"))


class DulwichBackend:
    """:class:`VersionControlBackend` built on ``dulwich.porcelain``."""

    def __init__(self, author: bytes = AUTHOR):
        self.author = author

    def __repr__(self) -> str:
        return "DulwichBackend()"

    def _transport_kwargs(self, remote: RemoteConfig) -> dict:
        if remote.ssh_key_path and is_ssh_url(remote.url):
            return {"ssh_command": build_git_ssh_command(remote.ssh_key_path)}
        return {}

    # -- clone ---------------------------------------------------------------

    def clone_or_open(self, remote: RemoteConfig, root: Path,
                      create_branch: bool = True) -> WorkingCopy:
        root = Path(root)
        wc = WorkingCopy(root=root, remote=remote)
        if (root / ".git").is_dir():
            logger.info("Opening existing working copy at %s", root)
            Repo(str(root)).close()
            return wc
        if root.exists() and any(root.iterdir()):
            raise BackendError(
                "clone", FileExistsError(f"working copy directory is not empty: {root}"),
            )
        root.mkdir(parents=True, exist_ok=True)

        logger.info("Cloning repository: url=%s, branch=%s", remote.url, remote.branch)
        try:
            repo = self._clone(remote, root, branch=remote.branch)
        except (ValueError, KeyError, porcelain.Error) as exc:
            if not create_branch:
                raise BackendError(
                    "clone", LookupError(f"remote has no branch {remote.branch!r}"),
                ) from exc
            logger.info("Branch not found, cloning default branch: %s", exc)
            repo = self._clone(remote, root)
            self._start_branch(repo, remote.branch)
        else:
            # An empty remote clones without error but has no branch at all
            if not create_branch and _branch_ref(remote.branch) not in repo.refs:
                repo.close()
                shutil.rmtree(root / ".git", ignore_errors=True)
                raise BackendError(
                    "clone", LookupError(f"remote has no branch {remote.branch!r}"),
                )
        repo.close()
        return wc

    def _clone(self, remote: RemoteConfig, root: Path, branch: str | None = None) -> Repo:
        kwargs = self._transport_kwargs(remote)
        if branch is not None:
            kwargs["branch"] = branch.encode("utf-8")
        try:
            return porcelain.clone(
                remote.url, str(root), checkout=True, errstream=io.BytesIO(), **kwargs,
            )
        except BaseException:
            # Leave the directory empty so the next attempt can clone again
            shutil.rmtree(root / ".git", ignore_errors=True)
            raise

    def _start_branch(self, repo: Repo, branch: str) -> None:
        """Point HEAD at *branch*, created from the current HEAD commit."""
        ref = _branch_ref(branch)
        try:
            head = repo.head()
        except KeyError:
            head = None  # empty remote; the first commit creates the branch
        if head is not None and ref not in repo.refs:
            repo.refs[ref] = head
        repo.refs.set_symbolic_ref(b"HEAD", ref)

    # -- fetch ---------------------------------------------------------------

    def fetch_latest(self, wc: WorkingCopy) -> str | None:
        _require_remote(wc, "fetch")
        ref = _branch_ref(wc.remote.branch)
        with Repo(str(wc.root)) as repo:
            result = porcelain.fetch(
                repo, wc.remote.url, errstream=io.BytesIO(),
                **self._transport_kwargs(wc.remote),
            )
            refs = getattr(result, "refs", result)
            sha = refs.get(ref)
            if sha is None:
                logger.info("Remote has no branch %s yet", wc.remote.branch)
                return None

            new_paths = {
                entry.path
                for entry in iter_tree_contents(repo.object_store, repo[sha].tree)
            }
            stale = [p for p in repo.open_index() if p not in new_paths]
            stale.extend(
                p for p in porcelain.status(repo, untracked_files="all").untracked
                if _as_bytes(p) not in new_paths
            )

            # reset compares against the current HEAD, so move refs after it
            porcelain.reset(repo, "hard", sha)
            for leftover in stale:
                # Older dulwich only rewrites what the target tree contains,
                # and never touches untracked files (``git clean``)
                path = wc.root / os.fsdecode(leftover)
                if path.is_file() or path.is_symlink():
                    path.unlink()
                    _prune_empty_dirs(wc.root, path.parent)
            repo.refs[ref] = sha
            repo.refs.set_symbolic_ref(b"HEAD", ref)
        commit_id = sha.decode("ascii")
        logger.info("Working copy updated to %s", commit_id[:7])
        return commit_id

    # -- commit / push -------------------------------------------------------

    def _stage_all(self, repo: Repo, root: Path) -> None:
        """Stage additions, modifications and deletions (``git add -A``)."""
        status = porcelain.status(repo, untracked_files="all")
        to_add: list[str] = []
        to_remove: list[str] = []
        for raw in list(status.unstaged) + list(status.untracked):
            rel = os.fsdecode(raw)
            full = root / rel
            if full.exists():
                to_add.append(str(full))
            else:
                to_remove.append(str(full))
        if to_add:
            porcelain.add(repo, paths=to_add)
        if to_remove:
            porcelain.remove(repo, paths=to_remove, cached=True)

    def commit(self, wc: WorkingCopy, message: str) -> str | None:
        root = wc.root.resolve()
        with Repo(str(root)) as repo:
            self._stage_all(repo, root)
            sha = porcelain.commit(
                repo, message=message.encode("utf-8"),
                author=self.author, committer=self.author,
            )
        commit_id = sha.decode("ascii") if isinstance(sha, bytes) else str(sha)
        logger.info("Committed %s", commit_id[:7])
        return commit_id

    def push(self, wc: WorkingCopy) -> None:
        _require_remote(wc, "push")
        ref = _branch_ref(wc.remote.branch)
        logger.info("Pushing to remote branch %s", wc.remote.branch)
        with Repo(str(wc.root)) as repo:
            porcelain.push(
                repo, wc.remote.url, ref,
                outstream=io.BytesIO(), errstream=io.BytesIO(),
                **self._transport_kwargs(wc.remote),
            )

"""Tests for DulwichBackend against real bare repositories."""

import pytest
from dulwich.repo import Repo

from file_syncer import (
    BackendError,
    Codec,
    CompressionPolicy,
    DulwichBackend,
    RemoteConfig,
    SyncConfig,
    SyncMode,
    sync,
)
from file_syncer.backend import build_git_ssh_command, is_ssh_url

from conftest import remote_files, remote_message, seed_bare_repo, tree_files, write_tree


def _head(path, branch=b"main"):
    with Repo(str(path)) as repo:
        return repo.refs[b"refs/heads/" + branch]


# ---------------------------------------------------------------------------
# SSH helpers
# ---------------------------------------------------------------------------

class TestSsh:
    def test_ssh_command(self):
        assert build_git_ssh_command("/home/me/.ssh/id_ed25519") == (
            "ssh -i /home/me/.ssh/id_ed25519 "
            "-o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
        )

    def test_ssh_command_quotes_key(self):
        cmd = build_git_ssh_command("/keys/my key")
        assert cmd.startswith("ssh -i '/keys/my key' ")

    @pytest.mark.parametrize("url,expected", [
        ("git@github.com:me/notes.git", True),
        ("ssh://git@host/notes.git", True),
        ("git+ssh://host/notes.git", True),
        ("https://github.com/me/notes.git", False),
        ("/srv/git/notes.git", False),
        ("C:/repos/notes.git", False),
    ])
    def test_is_ssh_url(self, url, expected):
        assert is_ssh_url(url) is expected

    def test_key_only_used_for_ssh(self):
        backend = DulwichBackend()
        ssh = RemoteConfig("git@host:r.git", ssh_key_path="/k")
        https = RemoteConfig("https://host/r.git", ssh_key_path="/k")
        assert backend._transport_kwargs(ssh) == {"ssh_command": build_git_ssh_command("/k")}
        assert backend._transport_kwargs(https) == {}


# ---------------------------------------------------------------------------
# clone_or_open
# ---------------------------------------------------------------------------

class TestCloneOrOpen:
    def test_clone(self, bare_remote, wc_dir):
        wc = DulwichBackend().clone_or_open(RemoteConfig(bare_remote), wc_dir)
        assert wc.root == wc_dir
        assert (wc_dir / ".git").is_dir()
        assert tree_files(wc_dir) == {"a.txt": b"old", "gone.txt": b"bye"}

    def test_reopen(self, bare_remote, wc_dir):
        backend = DulwichBackend()
        backend.clone_or_open(RemoteConfig(bare_remote), wc_dir)
        (wc_dir / "scratch.txt").write_text("x")
        backend.clone_or_open(RemoteConfig(bare_remote), wc_dir)
        assert (wc_dir / "scratch.txt").exists()

    def test_non_empty_directory(self, bare_remote, wc_dir):
        write_tree(wc_dir, {"junk.txt": "j"})
        with pytest.raises(BackendError) as exc_info:
            DulwichBackend().clone_or_open(RemoteConfig(bare_remote), wc_dir)
        assert exc_info.value.stage == "clone"

    def test_missing_branch_starts_from_default(self, bare_remote, wc_dir):
        DulwichBackend().clone_or_open(RemoteConfig(bare_remote, branch="backup"), wc_dir)
        assert tree_files(wc_dir) == {"a.txt": b"old", "gone.txt": b"bye"}
        with Repo(str(wc_dir)) as repo:
            assert repo.refs.read_ref(b"HEAD") == b"ref: refs/heads/backup"

    def test_missing_branch_without_create_fails(self, bare_remote, wc_dir):
        with pytest.raises(BackendError) as exc_info:
            DulwichBackend().clone_or_open(
                RemoteConfig(bare_remote, branch="backup"), wc_dir, create_branch=False,
            )
        assert exc_info.value.stage == "clone"
        assert not (wc_dir / ".git").exists()

    def test_empty_remote_without_create_fails(self, tmp_path, wc_dir):
        Repo.init_bare(str(tmp_path / "empty.git"), mkdir=True).close()
        with pytest.raises(BackendError) as exc_info:
            DulwichBackend().clone_or_open(
                RemoteConfig(str(tmp_path / "empty.git")), wc_dir, create_branch=False,
            )
        assert exc_info.value.stage == "clone"
        assert not (wc_dir / ".git").exists()

    def test_fetch_removes_untracked_leftovers(self, bare_remote, wc_dir):
        backend = DulwichBackend()
        wc = backend.clone_or_open(RemoteConfig(bare_remote), wc_dir)
        write_tree(wc_dir, {"stray/x.txt": "x", "a.txt": "edited"})

        assert backend.fetch_latest(wc) == _head(bare_remote).decode()
        assert tree_files(wc_dir) == {"a.txt": b"old", "gone.txt": b"bye"}
        assert not (wc_dir / "stray").exists()


# ---------------------------------------------------------------------------
# Push / pull through the orchestrator
# ---------------------------------------------------------------------------

def _config(tmp_path, remote, mode=SyncMode.PUSH, *, local="local", wc="wc", **kwargs):
    return SyncConfig(
        mode=mode,
        local_root=tmp_path / local,
        working_copy_root=tmp_path / wc,
        remote=remote,
        **kwargs,
    )


class TestDulwichSync:
    def test_push(self, tmp_path, bare_remote):
        write_tree(tmp_path / "local", {"a.txt": "hello", "docs/b.md": "doc"})
        result = sync(DulwichBackend(), _config(tmp_path, RemoteConfig(bare_remote)))

        assert remote_files(bare_remote) == {"a.txt": b"hello", "docs/b.md": b"doc"}
        assert remote_message(bare_remote).startswith(
            "Sync: +1 added, ~1 modified, -1 deleted\n\n"
        )
        assert result.commit_id == _head(bare_remote).decode()

    def test_second_push_makes_no_commit(self, tmp_path, bare_remote):
        write_tree(tmp_path / "local", {"a.txt": "hello"})
        remote = RemoteConfig(bare_remote)
        sync(DulwichBackend(), _config(tmp_path, remote))
        head = _head(bare_remote)

        result = sync(DulwichBackend(), _config(tmp_path, remote))
        assert result.changes.is_empty
        assert _head(bare_remote) == head

        # A fresh working copy agrees
        result = sync(DulwichBackend(), _config(tmp_path, remote, wc="wc2"))
        assert result.changes.is_empty

    def test_push_compressed(self, tmp_path, bare_remote):
        write_tree(tmp_path / "local", {"a.txt": "old", "n.txt": "new"})
        config = _config(tmp_path, RemoteConfig(bare_remote),
                         compression=CompressionPolicy.zstd("fast"))
        result = sync(DulwichBackend(), config)

        # a.txt is unchanged, so it keeps its raw representation
        assert set(result.changes.added) == {"n.txt"}
        files = remote_files(bare_remote)
        assert set(files) == {"a.txt", "n.txt-zstd"}
        assert Codec().decode(files["n.txt-zstd"], "n.txt-zstd") == (b"new", "n.txt")

    def test_pull(self, tmp_path):
        stored, name = Codec(CompressionPolicy.zstd()).encode(b"packed", "p.txt")
        remote = seed_bare_repo(tmp_path / "r.git", {name: stored, "plain.txt": b"plain"})
        result = sync(DulwichBackend(), _config(tmp_path, RemoteConfig(remote), SyncMode.PULL))

        assert set(result.changes.added) == {"p.txt", "plain.txt"}
        assert tree_files(tmp_path / "local") == {"p.txt": b"packed", "plain.txt": b"plain"}

    def test_pull_fetches_new_commits(self, tmp_path, bare_remote):
        remote = RemoteConfig(bare_remote)
        sync(DulwichBackend(), _config(tmp_path, remote, SyncMode.PULL, local="mirror"))
        assert tree_files(tmp_path / "mirror") == {"a.txt": b"old", "gone.txt": b"bye"}

        write_tree(tmp_path / "src", {"a.txt": "newer"})
        sync(DulwichBackend(), _config(tmp_path, remote, local="src", wc="wc-push"))

        # The pull working copy is reused and must catch up with the push
        result = sync(DulwichBackend(), _config(tmp_path, remote, SyncMode.PULL, local="mirror"))
        assert set(result.changes.modified) == {"a.txt"}
        assert result.changes.deleted == {"gone.txt"}
        assert tree_files(tmp_path / "mirror") == {"a.txt": b"newer"}

    def test_push_to_new_branch(self, tmp_path, bare_remote):
        write_tree(tmp_path / "local", {"a.txt": "old", "gone.txt": "bye", "c.txt": "c"})
        main_head = _head(bare_remote)
        result = sync(DulwichBackend(),
                      _config(tmp_path, RemoteConfig(bare_remote, branch="backup")))

        assert set(result.changes.added) == {"c.txt"}
        assert remote_files(bare_remote, b"backup") == {
            "a.txt": b"old", "gone.txt": b"bye", "c.txt": b"c",
        }
        assert _head(bare_remote) == main_head

    def test_missing_remote(self, tmp_path):
        write_tree(tmp_path / "local", {"a.txt": "a"})
        with pytest.raises(BackendError) as exc_info:
            sync(DulwichBackend(), _config(tmp_path, RemoteConfig(str(tmp_path / "nope.git"))))
        assert exc_info.value.stage == "clone"
        # A failed clone leaves nothing behind
        assert not (tmp_path / "wc" / ".git").exists()

    def test_pull_missing_branch_leaves_folder(self, tmp_path, bare_remote):
        write_tree(tmp_path / "local", {"mine.txt": "mine"})
        with pytest.raises(BackendError) as exc_info:
            sync(DulwichBackend(),
                 _config(tmp_path, RemoteConfig(bare_remote, branch="nosuch"), SyncMode.PULL))
        assert exc_info.value.stage == "clone"
        assert tree_files(tmp_path / "local") == {"mine.txt": b"mine"}

    def test_pull_empty_remote_leaves_folder(self, tmp_path):
        Repo.init_bare(str(tmp_path / "empty.git"), mkdir=True).close()
        write_tree(tmp_path / "local", {"mine.txt": "mine"})
        with pytest.raises(BackendError):
            sync(DulwichBackend(),
                 _config(tmp_path, RemoteConfig(str(tmp_path / "empty.git")), SyncMode.PULL))
        assert tree_files(tmp_path / "local") == {"mine.txt": b"mine"}

    def test_leftover_working_copy_file_is_pushed(self, tmp_path, bare_remote):
        # A run that wrote n.txt into the working copy, then died before committing
        DulwichBackend().clone_or_open(RemoteConfig(bare_remote), tmp_path / "wc")
        write_tree(tmp_path / "wc", {"n.txt": "n"})
        write_tree(tmp_path / "local", {"a.txt": "old", "gone.txt": "bye", "n.txt": "n"})

        result = sync(DulwichBackend(), _config(tmp_path, RemoteConfig(bare_remote)))
        assert set(result.changes.added) == {"n.txt"}
        assert remote_files(bare_remote) == {"a.txt": b"old", "gone.txt": b"bye", "n.txt": b"n"}

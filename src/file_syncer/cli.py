"""file-syncer CLI: push a folder to a git repository or pull it back."""

from __future__ import annotations

import logging
import tempfile
from contextlib import ExitStack
from pathlib import Path

import click

from ._exclude import ExcludeFilter
from .backend import DulwichBackend
from .codec import CompressionLevel, CompressionPolicy
from .config import RemoteConfig, SyncConfig, SyncMode, validate_config
from .exceptions import SyncError
from .log import LOG_FILE_NAME, init_logging
from .message import summary_line
from .orchestrator import SyncOrchestrator, SyncResult

logger = logging.getLogger(__name__)


def _report(result: SyncResult, dry_run: bool) -> None:
    for w in result.warnings:
        click.echo(f"WARNING: {w.path}: {w.error}", err=True)
    if dry_run:
        for action in result.changes.actions():
            click.echo(f"{action.kind.marker} {action.path}")
    if result.message is not None:
        click.echo(result.message.subject)
    elif result.changes.is_empty:
        click.echo("No changes")
    else:
        click.echo(summary_line(result.changes))


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--mode", type=click.Choice([m.value for m in SyncMode]), required=True,
              envvar="FILE_SYNCER_MODE", help="push: folder → repo; pull: repo → folder.")
@click.option("--folder", type=click.Path(file_okay=False), required=True,
              envvar="FILE_SYNCER_FOLDER", help="Path to the folder to sync.")
@click.option("--repo", "repo_url", required=True, envvar="FILE_SYNCER_REPO",
              help="Git repository URL (or set FILE_SYNCER_REPO).")
@click.option("--branch", default="main", show_default=True, envvar="FILE_SYNCER_BRANCH",
              help="Git branch to use.")
@click.option("--ssh-key", type=click.Path(dir_okay=False), default=None,
              envvar="FILE_SYNCER_SSH_KEY", help="SSH private key for git operations.")
@click.option("--compress/--no-compress", default=False, envvar="FILE_SYNCER_COMPRESS",
              help="Store files zstd-compressed in the repository.")
@click.option("--level", type=click.Choice([lvl.value for lvl in CompressionLevel]),
              default=CompressionLevel.DEFAULT.value, show_default=True,
              help="Compression level (with --compress).")
@click.option("--work-dir", type=click.Path(file_okay=False), default=None,
              envvar="FILE_SYNCER_WORK_DIR",
              help="Keep the working copy here (default: a temporary directory).")
@click.option("--exclude", multiple=True,
              help="Exclude files matching pattern (gitignore syntax, repeatable).")
@click.option("--exclude-from", "exclude_from", type=click.Path(exists=True, dir_okay=False),
              help="Read exclude patterns from file.")
@click.option("-m", "--message", default=None,
              help="Commit subject; supports {default}, {added}, {modified}, "
                   "{deleted}, {total}.")
@click.option("-n", "--dry-run", is_flag=True, default=False,
              help="Show what would change without writing or committing.")
@click.option("--timeout", type=float, default=None,
              help="Seconds allowed for each clone/fetch/commit/push.")
@click.option("--workers", type=int, default=None,
              help="Threads used to fingerprint files.")
@click.option("--log-file", default=LOG_FILE_NAME, show_default=True,
              envvar="FILE_SYNCER_LOG_FILE", help="Rotating log file.")
@click.option("--no-log-file", is_flag=True, default=False, help="Log to stdout only.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def main(mode, folder, repo_url, branch, ssh_key, compress, level, work_dir, exclude,
         exclude_from, message, dry_run, timeout, workers, log_file, no_log_file, verbose):
    """Sync a local folder with a git repository using push or pull.

    \b
        file-syncer --mode push --folder ./notes --repo git@host:me/notes.git
        file-syncer --mode pull --folder ./notes --repo git@host:me/notes.git
    """
    init_logging(None if no_log_file else log_file, verbose=verbose)

    patterns = tuple(exclude)
    if exclude_from:
        patterns = ExcludeFilter(patterns, exclude_from=exclude_from).patterns
    remote = RemoteConfig(url=repo_url, branch=branch, ssh_key_path=ssh_key)

    with ExitStack() as stack:
        if work_dir is None:
            work_dir = stack.enter_context(tempfile.TemporaryDirectory(prefix="file-syncer-"))
        config = SyncConfig(
            mode=SyncMode(mode),
            local_root=Path(folder).absolute(),
            working_copy_root=Path(work_dir).absolute(),
            compression=CompressionPolicy.parse(compress, level),
            remote=remote,
            exclude=patterns,
            dry_run=dry_run,
            message_template=message,
            backend_timeout=timeout,
            workers=workers,
        )
        try:
            validate_config(config)
            result = SyncOrchestrator(DulwichBackend(), config).run()
        except SyncError as exc:
            logger.error("Sync failed at %s: %s", exc.stage, exc)
            raise click.ClickException(f"[{exc.stage}] {exc}")

    _report(result, dry_run)

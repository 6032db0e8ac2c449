"""Commit messages synthesized from change sets."""

from __future__ import annotations

from dataclasses import dataclass

from .diff import ChangeSet
from .exceptions import ConfigError

MAX_LISTED_PATHS = 20

NO_CHANGES_SUBJECT = "Sync: no changes"


@dataclass(frozen=True)
class CommitMessage:
    """A one-line subject plus an optional body listing affected paths."""
    subject: str
    body: str = ""

    def __str__(self) -> str:
        if not self.body:
            return self.subject
        return f"{self.subject}\n\n{self.body}"


def summary_line(changes: ChangeSet) -> str:
    """Return ``Sync: +A added, ~M modified, -D deleted``."""
    if changes.is_empty:
        return NO_CHANGES_SUBJECT
    return (
        f"Sync: +{len(changes.added)} added, "
        f"~{len(changes.modified)} modified, "
        f"-{len(changes.deleted)} deleted"
    )


def path_listing(changes: ChangeSet, limit: int = MAX_LISTED_PATHS) -> str:
    """List the first *limit* changed paths in sorted order.

    A trailing ``... +K more`` line is added when the listing is cut.
    """
    actions = changes.actions()
    lines = [f"{a.kind.marker} {a.path}" for a in actions[:limit]]
    hidden = len(actions) - len(lines)
    if hidden > 0:
        lines.append(f"... +{hidden} more")
    return "\n".join(lines)


def generate_commit_message(changes: ChangeSet, *, limit: int = MAX_LISTED_PATHS) -> CommitMessage:
    """Render *changes* as a :class:`CommitMessage`.

    An empty change set yields :data:`NO_CHANGES_SUBJECT`; callers must not
    commit in that case.
    """
    if changes.is_empty:
        return CommitMessage(NO_CHANGES_SUBJECT)
    return CommitMessage(summary_line(changes), path_listing(changes, limit))


def format_commit_message(
    changes: ChangeSet, template: str | None = None, *, limit: int = MAX_LISTED_PATHS,
) -> CommitMessage:
    """Generate a commit message, optionally from a user template.

    Args:
        changes: The change set being committed.
        template: Custom subject.  Supports placeholders ``{default}``,
            ``{added}``, ``{modified}``, ``{deleted}``, ``{total}``.  A
            template without placeholders is used verbatim.
        limit: Maximum number of paths listed in the body.

    Raises:
        ConfigError: *template* names an unknown placeholder or is
            malformed.
    """
    message = generate_commit_message(changes, limit=limit)
    if not template:
        return message
    subject = template
    if "{" in template:
        try:
            subject = template.format(
                default=message.subject,
                added=len(changes.added),
                modified=len(changes.modified),
                deleted=len(changes.deleted),
                total=changes.total,
            )
        except (KeyError, IndexError, ValueError, AttributeError) as exc:
            raise ConfigError(f"invalid message template {template!r}: {exc}") from exc
    return CommitMessage(subject, message.body)

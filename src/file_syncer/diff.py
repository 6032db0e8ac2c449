"""Change detection between two file tree snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .scanner import FileDescriptor, FileTreeSnapshot, path_key


class ChangeKind(str, Enum):
    """Kind of change: ``ADDED``, ``MODIFIED``, or ``DELETED``."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    def __str__(self) -> str:          # noqa: D105
        return self.value

    @property
    def marker(self) -> str:
        """One-character marker used in listings (``+``, ``~``, ``-``)."""
        return _MARKERS[self]


_MARKERS = {
    ChangeKind.ADDED: "+",
    ChangeKind.MODIFIED: "~",
    ChangeKind.DELETED: "-",
}


@dataclass(frozen=True)
class Change:
    """A single entry of a :class:`ChangeSet`."""
    path: str
    kind: ChangeKind


@dataclass
class ChangeSet:
    """Difference between a source and a destination snapshot.

    Attributes:
        added: Paths only in the source, with their source descriptor.
        modified: Paths in both with different fingerprints, as
            ``(destination, source)`` descriptor pairs (old, new).
        deleted: Paths only in the destination.
    """
    added: dict[str, FileDescriptor] = field(default_factory=dict)
    modified: dict[str, tuple[FileDescriptor, FileDescriptor]] = field(default_factory=dict)
    deleted: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        """``True`` if there is nothing to add, modify, or delete."""
        return not self.added and not self.modified and not self.deleted

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    def sorted_deleted(self) -> list[str]:
        return sorted(self.deleted, key=path_key)

    def actions(self) -> list[Change]:
        """Return all changes as a flat list sorted byte-wise by path."""
        result = [Change(p, ChangeKind.ADDED) for p in self.added]
        result.extend(Change(p, ChangeKind.MODIFIED) for p in self.modified)
        result.extend(Change(p, ChangeKind.DELETED) for p in self.deleted)
        result.sort(key=lambda c: path_key(c.path))
        return result


def diff(source: FileTreeSnapshot, destination: FileTreeSnapshot) -> ChangeSet:
    """Compute what must change for *destination* to match *source*.

    Both snapshots are already sorted byte-wise by path, so this is a
    single merge walk.  Two files are equal iff their fingerprints are
    equal; size, storage and metadata never count.
    """
    changes = ChangeSet()
    src, dst = source.files, destination.files
    i = j = 0
    while i < len(src) and j < len(dst):
        s, d = src[i], dst[j]
        sk, dk = path_key(s.path), path_key(d.path)
        if sk < dk:
            changes.added[s.path] = s
            i += 1
        elif sk > dk:
            changes.deleted.add(d.path)
            j += 1
        else:
            if s.fingerprint != d.fingerprint:
                changes.modified[s.path] = (d, s)
            i += 1
            j += 1
    for s in src[i:]:
        changes.added[s.path] = s
    for d in dst[j:]:
        changes.deleted.add(d.path)
    return changes

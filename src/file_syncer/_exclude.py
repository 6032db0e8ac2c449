"""User exclude patterns for local scans.

Combines ``--exclude`` patterns and an ``--exclude-from`` file into one
predicate consulted by :func:`~file_syncer.scanner.scan_tree` while it
walks the local tree.  Pulls consult it too, so excluded local files are
never overwritten.  Pattern syntax follows gitignore rules
(``dulwich.ignore.IgnoreFilter``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from dulwich.ignore import IgnoreFilter


def _read_pattern_file(path: str) -> list[bytes]:
    lines: list[bytes] = []
    for raw in Path(path).read_bytes().splitlines():
        line = raw.strip()
        if line and not line.startswith(b"#"):
            lines.append(line)
    return lines


class ExcludeFilter:
    """Gitignore-style exclusion of relative paths."""

    def __init__(
        self,
        patterns: Sequence[str] | None = None,
        *,
        exclude_from: str | None = None,
    ) -> None:
        lines = [p.encode("utf-8") for p in patterns or ()]
        if exclude_from is not None:
            lines.extend(_read_pattern_file(exclude_from))
        self.patterns = tuple(line.decode("utf-8") for line in lines)
        self._filter: IgnoreFilter | None = IgnoreFilter(lines) if lines else None

    def __repr__(self) -> str:
        return f"ExcludeFilter({list(self.patterns)!r})"

    @property
    def active(self) -> bool:
        """True if any pattern is configured."""
        return self._filter is not None

    def is_excluded(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Return True if *rel_path* (forward slashes) matches a pattern.

        Directories are checked with a trailing slash so ``build/`` only
        matches directories.  A negated match (``!keep.log``) wins over an
        earlier exclusion.
        """
        if self._filter is None:
            return False
        check = rel_path + "/" if is_dir else rel_path
        return self._filter.is_ignored(check) is True

    def excludes_path(self, rel_path: str) -> bool:
        """True if the walk would skip file *rel_path* or a parent directory."""
        parts = rel_path.split("/")
        for depth in range(1, len(parts)):
            if self.is_excluded("/".join(parts[:depth]), is_dir=True):
                return True
        return self.is_excluded(rel_path)

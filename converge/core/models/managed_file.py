"""
Managed-file record — derived paths and retained versions of a remote file.

Every derived path is a deterministic function of the managed file's
base path and the scratch directory, so the same inputs always name
the same staging, checksum and backup files.
"""

from __future__ import annotations

import posixpath
import re

from pydantic import BaseModel, Field

DEFAULT_MAX_VERSIONS = 5

_VERSION_RE = re.compile(r"\.~(\d+)~$")


def _scratch_name(scratch_dir: str, base_path: str) -> str:
    return posixpath.join(scratch_dir, base_path.lstrip("/"))


def version_number(path: str) -> int:
    """Sequence number of a retained version (``<backup>.~N~``)."""
    m = _VERSION_RE.search(path)
    if m is None:
        raise ValueError(f"Not a retained version path: {path}")
    return int(m.group(1))


class ManagedFileRecord(BaseModel):
    """Bookkeeping for one remote-file invocation."""

    base_path: str
    staged_path: str
    checksum_path: str
    backup_path: str
    retained_versions: list[str] = Field(default_factory=list)
    max_versions: int = DEFAULT_MAX_VERSIONS

    @classmethod
    def derive(
        cls,
        base_path: str,
        scratch_dir: str,
        max_versions: int = DEFAULT_MAX_VERSIONS,
        retained_versions: list[str] | None = None,
    ) -> ManagedFileRecord:
        stem = _scratch_name(scratch_dir, base_path)
        return cls(
            base_path=base_path,
            staged_path=f"{stem}.new",
            checksum_path=f"{stem}.md5",
            backup_path=f"{stem}.converge",
            retained_versions=sorted(retained_versions or [], key=version_number),
            max_versions=max_versions,
        )

    @property
    def version_glob(self) -> str:
        return f"{self.backup_path}.~*~"

    def next_backup(self) -> str:
        """Path for the next retained version."""
        last = max((version_number(p) for p in self.retained_versions), default=0)
        return f"{self.backup_path}.~{last + 1}~"

    def rotate(self, new_backup: str) -> list[str]:
        """Append a new backup and evict the oldest beyond ``max_versions``.

        Returns:
            The evicted paths, oldest first.
        """
        self.retained_versions.append(new_backup)
        excess = len(self.retained_versions) - self.max_versions
        if excess <= 0:
            return []
        evicted = self.retained_versions[:excess]
        del self.retained_versions[:excess]
        return evicted

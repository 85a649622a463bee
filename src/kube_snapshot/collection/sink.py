"""Map artifact paths to files under the run root."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Iterable

from kube_snapshot.errors import SinkWriteError

logger = logging.getLogger(__name__)


class OutputSink:
    """Writes artifacts below a single root directory.

    Any OSError while creating directories or writing files is fatal: it
    means the output tree itself is unusable, so the run cannot continue.
    Concurrent writes to distinct paths are safe.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def resolve(self, path: str | PurePosixPath) -> Path:
        """Return the absolute destination for a root-relative path."""
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"artifact path escapes the output root: {path}")
        return self.root.joinpath(*rel.parts)

    def ensure_dirs(self, paths: Iterable[str | PurePosixPath]) -> None:
        """Create the root and every declared subtree up front."""
        self._mkdir(self.root)
        for path in paths:
            self._mkdir(self.resolve(path))

    def write(self, path: str | PurePosixPath, data: bytes) -> int:
        """Write data to path (overwriting), creating parents; return bytes written."""
        dest = self.resolve(path)
        self._mkdir(dest.parent)
        try:
            dest.write_bytes(data)
        except OSError as e:
            raise SinkWriteError(str(dest), e.strerror or str(e)) from e
        return len(data)

    def total_size(self) -> int:
        """Sum of file sizes below the root."""
        return sum(p.stat().st_size for p in self.root.rglob("*") if p.is_file())

    def paths(self) -> set[str]:
        """Root-relative POSIX paths of every file currently written."""
        return {p.relative_to(self.root).as_posix() for p in self.root.rglob("*") if p.is_file()}

    def _mkdir(self, directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkWriteError(str(directory), e.strerror or str(e)) from e

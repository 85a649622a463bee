"""Fatal error types. Everything else is recorded as an artifact outcome."""

from __future__ import annotations


class SnapshotError(Exception):
    """Base class for errors that abort a collection run."""


class PreflightError(SnapshotError):
    """The cluster cannot be queried at all (missing kubectl, unreachable API, bad kubeconfig)."""


class SinkWriteError(SnapshotError):
    """The output tree cannot be written (permission denied, disk full)."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"cannot write {path}: {reason}")
        self.path = path
        self.reason = reason

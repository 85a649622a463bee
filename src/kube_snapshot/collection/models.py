"""Structured models for queries, their results and the artifacts they produce."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

# Exit code reported when the command itself cannot be found, as a shell would
EXIT_NOT_FOUND = 127
# Exit code reported for timeouts and other launch errors
EXIT_ERROR = -1


class Query(BaseModel):
    """A single read-only command: kubectl, helm, or a host tool for extension tasks."""

    model_config = ConfigDict(frozen=True)

    tool: str = "kubectl"
    args: tuple[str, ...] = ()
    timeout: float | None = None

    def describe(self) -> str:
        return " ".join((self.tool, *self.args))


class QueryResult(BaseModel):
    """Outcome of running a Query. Failure is a value, never an exception."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    diagnostic: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def content(self) -> bytes:
        """Bytes written to the artifact: stdout followed by stderr, like `cmd > file 2>&1`."""
        data = self.stdout
        if self.stderr:
            if data and not data.endswith(b"\n"):
                data += b"\n"
            data += self.stderr
        if not data and not self.succeeded and self.diagnostic:
            data = self.diagnostic.encode() + b"\n"
        return data

    @classmethod
    def ok(cls, stdout: bytes | str) -> QueryResult:
        if isinstance(stdout, str):
            stdout = stdout.encode()
        return cls(exit_code=0, stdout=stdout)

    @classmethod
    def failed(cls, diagnostic: str, exit_code: int = EXIT_ERROR) -> QueryResult:
        return cls(exit_code=exit_code, stderr=diagnostic.encode() + b"\n", diagnostic=diagnostic)


class Outcome(str, Enum):
    """Per-artifact outcome."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class Artifact(BaseModel):
    """One captured piece of output written to a fixed destination path."""

    task: str
    name: str
    path: str  # relative to the run root, POSIX separators
    outcome: Outcome
    size: int = 0
    diagnostic: str = ""
    optional: bool = False


class ContainerImage(BaseModel):
    """Image reference of one container in a pod spec."""

    model_config = ConfigDict(frozen=True)

    container: str
    image: str
    pull_policy: str = ""
    init: bool = False


class PodDescriptor(BaseModel):
    """A pod discovered at task execution time."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    containers: tuple[str, ...] = ()
    init_containers: tuple[str, ...] = ()
    images: tuple[ContainerImage, ...] = Field(default=())


@dataclass(frozen=True)
class WorkItem:
    """One leaf operation: run a query (or a producer) and write its content to `path`."""

    task: str
    name: str
    path: PurePosixPath
    query: Query | None = None
    producer: Callable[[], QueryResult] | None = None
    # Failure is routine (e.g. previous logs of a pod that never restarted)
    optional: bool = False

    def __post_init__(self) -> None:
        if (self.query is None) == (self.producer is None):
            raise ValueError(f"work item {self.name!r} needs exactly one of query or producer")


def replay(result: QueryResult) -> Callable[[], QueryResult]:
    """Producer for a WorkItem whose content is already known (discovery output, errors)."""
    return lambda: result

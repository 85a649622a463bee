"""Run summary models and the lock-protected accumulator that fills them."""

from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from kube_snapshot.collection.models import Artifact, Outcome


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskTally(BaseModel):
    """Per-task artifact counts."""

    name: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    expected_failures: int = Field(
        default=0,
        description="Failures of optional captures, e.g. previous logs of pods that never restarted",
    )
    error: str = ""

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed + self.skipped


class RunSummary(BaseModel):
    """Aggregate of a collection run, computed after all tasks complete."""

    started_at: datetime
    finished_at: datetime
    context: str
    server_version: str = ""
    output_dir: str
    namespaces: list[str] = Field(default_factory=list)
    tasks: list[TaskTally] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    total_size: int = 0
    cancelled: bool = False

    @property
    def total_artifacts(self) -> int:
        return len(self.artifacts)

    def task(self, name: str) -> TaskTally:
        for tally in self.tasks:
            if tally.name == name:
                return tally
        raise KeyError(name)

    def paths(self) -> set[str]:
        return {a.path for a in self.artifacts if a.outcome != Outcome.SKIPPED}


class SummaryRecorder:
    """Collects artifacts and task outcomes; safe to call from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskTally] = {}
        self._artifacts: list[Artifact] = []

    def begin_task(self, name: str, description: str = "") -> None:
        with self._lock:
            self._tasks.setdefault(name, TaskTally(name=name, description=description))

    def finish_task(self, name: str, status: TaskStatus, error: str = "") -> None:
        with self._lock:
            tally = self._tasks.setdefault(name, TaskTally(name=name))
            tally.status = status
            if error:
                tally.error = error

    def record(self, artifact: Artifact) -> None:
        with self._lock:
            tally = self._tasks.setdefault(artifact.task, TaskTally(name=artifact.task))
            if artifact.outcome == Outcome.SUCCESS:
                tally.succeeded += 1
            elif artifact.outcome == Outcome.FAILURE:
                tally.failed += 1
                if artifact.optional:
                    tally.expected_failures += 1
            else:
                tally.skipped += 1
            self._artifacts.append(artifact)

    def tally(self, name: str) -> TaskTally:
        with self._lock:
            return self._tasks[name].model_copy()

    def build(
        self,
        *,
        started_at: datetime,
        finished_at: datetime,
        context: str,
        output_dir: str,
        namespaces: list[str],
        total_size: int,
        server_version: str = "",
        cancelled: bool = False,
    ) -> RunSummary:
        with self._lock:
            return RunSummary(
                started_at=started_at,
                finished_at=finished_at,
                context=context,
                server_version=server_version,
                output_dir=output_dir,
                namespaces=namespaces,
                tasks=[t.model_copy() for t in self._tasks.values()],
                artifacts=sorted(self._artifacts, key=lambda a: (a.task, a.path)),
                total_size=total_size,
                cancelled=cancelled,
            )

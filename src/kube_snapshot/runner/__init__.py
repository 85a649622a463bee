"""Runner: orchestration of collection tasks and the run summary."""

from kube_snapshot.runner.orchestrator import Orchestrator, RunResult, print_result
from kube_snapshot.runner.summary import RunSummary, TaskStatus

__all__ = [
    "Orchestrator",
    "RunResult",
    "RunSummary",
    "TaskStatus",
    "print_result",
]

"""Orchestrator: preflight → eager layout → tasks in fixed order → summary."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from kube_snapshot.collection.cluster import ClusterInspector
from kube_snapshot.collection.executor import QueryExecutor
from kube_snapshot.collection.models import Artifact, Outcome
from kube_snapshot.collection.sink import OutputSink
from kube_snapshot.collection.tasks import CollectionContext, CollectionTask, builtin_tasks
from kube_snapshot.config import Settings, get_settings
from kube_snapshot.errors import PreflightError, SinkWriteError
from kube_snapshot.runner.pool import WorkRunner
from kube_snapshot.runner.report import render_report
from kube_snapshot.runner.summary import RunSummary, SummaryRecorder, TaskStatus

logger = logging.getLogger(__name__)

OUTPUT_PREFIX = "k8s_cluster_backup_"
SUMMARY_TEXT = "COLLECTION_SUMMARY.txt"
SUMMARY_JSON = "collection-summary.json"
# DNS-1123 label, the form Kubernetes requires of namespace names
NAMESPACE_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class RunResult:
    """Result of a collection run."""

    summary: RunSummary
    output_dir: Path
    report: str
    archive: Path | None = None

    @property
    def cancelled(self) -> bool:
        return self.summary.cancelled


class Orchestrator:
    """Runs collection tasks in order, isolating failures per task and per artifact.

    The namespace set is fixed at construction. Tasks write to disjoint
    subtrees and do not depend on each other; order only affects the
    progress output an operator sees.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        namespaces: Sequence[str] | None = None,
        extensions: Sequence[CollectionTask] = (),
        executor: Any = None,
        inspector: Any = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.settings = settings or get_settings()
        # First occurrence wins; repeated namespaces would only rewrite the same paths
        self.namespaces: tuple[str, ...] = tuple(dict.fromkeys(namespaces or self.settings.namespaces))
        if not self.namespaces:
            raise ValueError("at least one namespace is required")
        invalid = [ns for ns in self.namespaces if not NAMESPACE_PATTERN.match(ns)]
        if invalid:
            raise ValueError(f"invalid namespace name(s): {', '.join(invalid)}")
        self.tasks: list[CollectionTask] = builtin_tasks() + list(extensions)
        self.executor = executor or QueryExecutor(
            kubeconfig=self.settings.kubeconfig,
            context=self.settings.context,
            timeout=self.settings.query_timeout,
            kubectl_binary=self.settings.kubectl_binary,
            helm_binary=self.settings.helm_binary,
        )
        self.inspector = inspector
        self.clock = clock
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop dispatching new queries; what is already written stays."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested; finishing in-flight queries")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def preflight(self) -> tuple[str, str]:
        """Fail fast if the cluster cannot be queried at all. Returns (context, server version)."""
        if not self.executor.is_available("kubectl"):
            raise PreflightError("kubectl not found. Please install kubectl first.")
        if self.inspector is None:
            self.inspector = ClusterInspector(
                kubeconfig=self.settings.kubeconfig,
                context=self.settings.context,
                timeout=self.settings.query_timeout,
            )
        server_version = self.inspector.check_reachable()
        context = self.inspector.current_context()
        # Pin every kubectl/helm call to the context resolved now
        if getattr(self.executor, "context", "") is None and not getattr(self.inspector, "in_cluster", False):
            self.executor.context = context
        return context, server_version

    def run(self) -> RunResult:
        """Collect everything into a fresh timestamped directory and write the summary."""
        context, server_version = self.preflight()
        logger.info("Current context: %s", context)

        started_at = self.clock()
        root = Path(self.settings.output_dir) / f"{OUTPUT_PREFIX}{started_at:%Y%m%d_%H%M%S}"
        logger.info("Output directory: %s", root)
        logger.info("Collecting data from namespaces: %s", " ".join(self.namespaces))

        sink = OutputSink(root)
        ctx = CollectionContext(
            namespaces=self.namespaces,
            executor=self.executor,
            inspector=self.inspector,
            log_timeout=self.settings.log_timeout,
        )
        logger.info("Creating directory structure...")
        sink.ensure_dirs(path for task in self.tasks for path in task.directories(ctx))

        recorder = SummaryRecorder()
        runner = WorkRunner(
            self.executor,
            sink,
            recorder,
            workers=self.settings.workers,
            cancel_event=self._cancel,
        )
        for task in self.tasks:
            self._run_task(task, ctx, runner, recorder, sink)

        logger.info("Creating collection summary...")
        summary = recorder.build(
            started_at=started_at,
            finished_at=self.clock(),
            context=context,
            server_version=server_version,
            output_dir=str(root),
            namespaces=list(self.namespaces),
            total_size=sink.total_size(),
            cancelled=self.cancelled,
        )
        report = render_report(summary)
        sink.write(SUMMARY_TEXT, report.encode())
        sink.write(SUMMARY_JSON, summary.model_dump_json(indent=2).encode())
        return RunResult(summary=summary, output_dir=root, report=report)

    def _run_task(
        self,
        task: CollectionTask,
        ctx: CollectionContext,
        runner: WorkRunner,
        recorder: SummaryRecorder,
        sink: OutputSink,
    ) -> None:
        recorder.begin_task(task.name, task.description)
        if self.cancelled:
            recorder.finish_task(task.name, TaskStatus.CANCELLED)
            return
        if not task.is_available(ctx):
            logger.warning("%s: not available, skipping", task.description)
            recorder.finish_task(task.name, TaskStatus.SKIPPED, error="tool not installed")
            return

        logger.info("Collecting %s...", task.description)
        try:
            runner.run(task.plan(ctx))
        except SinkWriteError:
            raise
        except Exception as e:
            logger.exception("Task %s failed", task.name)
            path = PurePosixPath(task.subtree, f"{task.name}-task-error.txt")
            message = f"{type(e).__name__}: {e}"
            size = sink.write(path, f"{message}\n".encode())
            recorder.record(
                Artifact(
                    task=task.name,
                    name=f"{task.name} task error",
                    path=path.as_posix(),
                    outcome=Outcome.FAILURE,
                    size=size,
                    diagnostic=message,
                )
            )
            recorder.finish_task(task.name, TaskStatus.FAILED, error=message)
            return
        recorder.finish_task(task.name, TaskStatus.CANCELLED if self.cancelled else TaskStatus.COMPLETED)


def print_result(result: RunResult, console: Console | None = None) -> None:
    """Print the collection summary to console using Rich."""
    c = console or Console()
    style = "yellow" if result.cancelled else "blue"
    c.print(Panel(Text(result.report.strip()), title="Collection Summary", border_style=style))
    if result.archive:
        c.print(f"\n[bold]Backup location:[/bold] {result.archive}")
    else:
        c.print(f"\n[bold]Output directory:[/bold] {result.output_dir}")

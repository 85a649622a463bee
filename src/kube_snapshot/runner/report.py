"""Plain-text collection summary written next to the collected data."""

from __future__ import annotations

from kube_snapshot.collection.models import Outcome
from kube_snapshot.runner.summary import RunSummary, TaskStatus, TaskTally

REPORT_HEADER = """Kubernetes Cluster Data Collection Summary
==========================================
Collection Date: {collected_at}
Cluster: {context}
Server Version: {server_version}
Output Directory: {output_dir}
Namespaces: {namespaces}
"""

REPORT_SECTION_COLLECTED = """
Collected Data:
{tasks}
"""

REPORT_SECTION_FAILURES = """
Failed Artifacts:
{failures}
"""

REPORT_SECTION_TOTALS = """
Total Artifacts: {total_artifacts}
Total Size: {total_size}
"""

REPORT_CANCELLED = """
Collection was interrupted: the output is partial.
"""

# Cap on individually listed failures
MAX_LISTED_FAILURES = 50


def format_size(num_bytes: int) -> str:
    """Human-readable size in the style of `du -h`."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            if unit == "B":
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def _task_line(tally: TaskTally) -> str:
    label = tally.description or tally.name
    if tally.status == TaskStatus.SKIPPED:
        reason = f" ({tally.error})" if tally.error else ""
        return f"- {label}: skipped{reason}"
    counts = f"{tally.succeeded} collected, {tally.failed} failed"
    if tally.expected_failures:
        counts += f" ({tally.expected_failures} expected, e.g. no previous logs)"
    if tally.skipped:
        counts += f", {tally.skipped} skipped"
    if tally.status == TaskStatus.FAILED:
        return f"- {label}: FAILED ({tally.error}); {counts}"
    if tally.status == TaskStatus.CANCELLED:
        return f"- {label}: cancelled; {counts}"
    return f"- {label}: {counts}"


def render_report(summary: RunSummary) -> str:
    """Render the run summary for the operator."""
    parts = [
        REPORT_HEADER.format(
            collected_at=summary.started_at.strftime("%a %b %d %H:%M:%S %Z %Y"),
            context=summary.context,
            server_version=summary.server_version or "unknown",
            output_dir=summary.output_dir,
            namespaces=" ".join(summary.namespaces),
        ),
        REPORT_SECTION_COLLECTED.format(tasks="\n".join(_task_line(t) for t in summary.tasks)),
    ]
    failures = [a for a in summary.artifacts if a.outcome == Outcome.FAILURE and not a.optional]
    if failures:
        lines = [f"- {a.path}: {a.diagnostic or 'failed'}" for a in failures[:MAX_LISTED_FAILURES]]
        if len(failures) > MAX_LISTED_FAILURES:
            lines.append(f"- ... and {len(failures) - MAX_LISTED_FAILURES} more")
        parts.append(REPORT_SECTION_FAILURES.format(failures="\n".join(lines)))
    parts.append(
        REPORT_SECTION_TOTALS.format(
            total_artifacts=summary.total_artifacts,
            total_size=format_size(summary.total_size),
        )
    )
    if summary.cancelled:
        parts.append(REPORT_CANCELLED)
    return "".join(parts)

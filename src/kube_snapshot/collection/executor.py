"""Run read-only kubectl / helm commands and capture their output without raising."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from kube_snapshot.collection.models import EXIT_ERROR, EXIT_NOT_FOUND, Query, QueryResult

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = 60.0


class QueryExecutor:
    """Executes Query objects against a single cluster context.

    kubectl and helm invocations get the configured kubeconfig/context flags
    appended so every query in a run targets the same cluster. Any other tool
    (used by extension tasks) runs exactly as given.
    """

    def __init__(
        self,
        kubeconfig: str | Path | None = None,
        context: str | None = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        kubectl_binary: str = "kubectl",
        helm_binary: str = "helm",
    ) -> None:
        self.kubeconfig = str(kubeconfig) if kubeconfig else None
        self.context = context
        self.timeout = timeout
        self._binaries = {"kubectl": kubectl_binary, "helm": helm_binary}

    def is_available(self, tool: str) -> bool:
        """Return True if the tool's executable is on PATH."""
        return shutil.which(self._binaries.get(tool, tool)) is not None

    def argv(self, query: Query) -> list[str]:
        cmd = [self._binaries.get(query.tool, query.tool), *query.args]
        if query.tool == "kubectl":
            if self.kubeconfig:
                cmd += ["--kubeconfig", self.kubeconfig]
            if self.context:
                cmd += ["--context", self.context]
        elif query.tool == "helm":
            if self.kubeconfig:
                cmd += ["--kubeconfig", self.kubeconfig]
            if self.context:
                cmd += ["--kube-context", self.context]
        return cmd

    def execute(self, query: Query) -> QueryResult:
        """Run the query once and return its result; never raises on command failure."""
        cmd = self.argv(query)
        timeout = query.timeout or self.timeout
        logger.debug("Running: %s", " ".join(cmd))
        try:
            process = subprocess.run(
                cmd,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return QueryResult.failed(f"{cmd[0]}: command not found", exit_code=EXIT_NOT_FOUND)
        except subprocess.TimeoutExpired as e:
            logger.warning("Timed out after %ss: %s", timeout, query.describe())
            return QueryResult(
                exit_code=EXIT_ERROR,
                stdout=e.stdout or b"",
                stderr=(e.stderr or b"") + f"query timed out after {timeout}s\n".encode(),
                diagnostic=f"timed out after {timeout}s",
            )
        except OSError as e:
            logger.warning("Failed to run %s: %s", query.describe(), e)
            return QueryResult.failed(f"{cmd[0]}: {e}")

        diagnostic = ""
        if process.returncode != 0:
            diagnostic = _last_line(process.stderr) or f"exit status {process.returncode}"
        return QueryResult(
            exit_code=process.returncode,
            stdout=process.stdout or b"",
            stderr=process.stderr or b"",
            diagnostic=diagnostic,
        )


def _last_line(data: bytes | None) -> str:
    lines = (data or b"").decode(errors="replace").strip().splitlines()
    return lines[-1] if lines else ""

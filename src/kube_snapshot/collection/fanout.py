"""Repeat namespace-scoped collection over namespaces, pods and containers."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any, Callable, Iterable, Iterator, Sequence

from kube_snapshot.collection.cluster import DISCOVERY_ERRORS
from kube_snapshot.collection.models import PodDescriptor, Query, QueryResult, WorkItem, replay

logger = logging.getLogger(__name__)

NAMESPACES_DIR = PurePosixPath("namespaces")


def namespace_dir(namespace: str, *parts: str) -> PurePosixPath:
    """namespaces/<ns>/<parts...>"""
    return NAMESPACES_DIR.joinpath(namespace, *parts)


class NamespaceFanout:
    """Drives per-namespace and per-pod expansion of a task into work items.

    Pod discovery for a namespace completes before any of that namespace's
    pod-scoped items is yielded, so a namespace is never re-listed midway
    through its fan-out. Discovery is not cached: each call lists again.
    """

    def __init__(self, namespaces: Sequence[str], inspector: Any) -> None:
        self.namespaces = tuple(namespaces)
        self.inspector = inspector

    def each_namespace(self, expand: Callable[[str], Iterable[WorkItem]]) -> Iterator[WorkItem]:
        for namespace in self.namespaces:
            logger.info("Processing namespace: %s", namespace)
            yield from expand(namespace)

    def each_pod(
        self,
        task: str,
        namespace: str,
        expand: Callable[[PodDescriptor], Iterable[WorkItem]],
        failure_path: PurePosixPath,
    ) -> Iterator[WorkItem]:
        """Snapshot the pods of a namespace and expand each one.

        If the pod list cannot be fetched the namespace degrades to zero pods
        and a single failed artifact at `failure_path` records why.
        """
        try:
            pods = self.inspector.discover_pods(namespace)
        except DISCOVERY_ERRORS as e:
            logger.warning("Failed to list pods in %s: %s", namespace, e)
            yield WorkItem(
                task=task,
                name=f"{namespace} pod discovery",
                path=failure_path,
                producer=replay(QueryResult.failed(f"failed to list pods in namespace {namespace}: {e}")),
            )
            return
        logger.debug("Discovered %d pods in %s", len(pods), namespace)
        for pod in pods:
            yield from expand(pod)


def pod_log_items(task: str, pod: PodDescriptor, timeout: float | None = None) -> Iterator[WorkItem]:
    """Combined and per-container, current and previous log captures for one pod.

    A pod that never restarted has no previous logs; kubectl reports that as
    an error, so the previous-log artifacts are failed but still present.
    """
    logs = namespace_dir(pod.namespace, "logs")
    base = ("logs", pod.name, "-n", pod.namespace, "--timestamps")

    yield WorkItem(
        task=task,
        name=f"{pod.namespace}/{pod.name} current logs",
        path=logs / f"{pod.name}-current.log",
        query=Query(args=(*base, "--all-containers=true"), timeout=timeout),
    )
    yield WorkItem(
        task=task,
        name=f"{pod.namespace}/{pod.name} previous logs",
        path=logs / f"{pod.name}-previous.log",
        query=Query(args=(*base, "--previous", "--all-containers=true"), timeout=timeout),
        optional=True,
    )
    for container in pod.containers:
        yield WorkItem(
            task=task,
            name=f"{pod.namespace}/{pod.name}/{container} current logs",
            path=logs / f"{pod.name}-{container}.log",
            query=Query(args=(*base, "-c", container), timeout=timeout),
        )
        yield WorkItem(
            task=task,
            name=f"{pod.namespace}/{pod.name}/{container} previous logs",
            path=logs / f"{pod.name}-{container}-previous.log",
            query=Query(args=(*base, "-c", container, "--previous"), timeout=timeout),
            optional=True,
        )


def pod_describe_item(task: str, pod: PodDescriptor) -> WorkItem:
    return WorkItem(
        task=task,
        name=f"{pod.namespace}/{pod.name} description",
        path=namespace_dir(pod.namespace, "pods", f"{pod.name}-describe.txt"),
        query=Query(args=("describe", "pod", pod.name, "-n", pod.namespace)),
    )

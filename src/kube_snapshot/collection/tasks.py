"""Built-in collection tasks and the extension task type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from pathlib import PurePosixPath
from typing import Any, Iterator, Sequence

from kube_snapshot.collection.cluster import DISCOVERY_ERRORS
from kube_snapshot.collection.fanout import (
    NamespaceFanout,
    namespace_dir,
    pod_describe_item,
    pod_log_items,
)
from kube_snapshot.collection.models import PodDescriptor, Query, QueryResult, WorkItem, replay
from kube_snapshot.config import ExtraCommand

logger = logging.getLogger(__name__)

CUSTOM_DIR = "custom"

# Namespace-scoped kinds captured by the namespaces task: (kind, directory)
NAMESPACED_KINDS: tuple[tuple[str, str], ...] = (
    ("pods", "pods"),
    ("services", "services"),
    ("deployments", "deployments"),
    ("statefulsets", "statefulsets"),
    ("daemonsets", "daemonsets"),
    ("configmaps", "configmaps"),
    ("pvc", "pvcs"),
)


@dataclass(frozen=True)
class CollectionContext:
    """Everything a task needs to plan its work; fixed for the whole run."""

    namespaces: tuple[str, ...]
    executor: Any
    inspector: Any
    log_timeout: float | None = None

    def fanout(self) -> NamespaceFanout:
        return NamespaceFanout(self.namespaces, self.inspector)


class CollectionTask:
    """A named unit of collection writing into its own subtree."""

    name: str = ""
    description: str = ""
    subtree: str = ""

    def directories(self, ctx: CollectionContext) -> list[PurePosixPath]:
        """Subtrees created before any task runs."""
        return [PurePosixPath(self.subtree)]

    def is_available(self, ctx: CollectionContext) -> bool:
        return True

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        raise NotImplementedError

    def item(self, filename: str, *args: str, tool: str = "kubectl", timeout: float | None = None) -> WorkItem:
        return WorkItem(
            task=self.name,
            name=filename,
            path=PurePosixPath(self.subtree, filename),
            query=Query(tool=tool, args=args, timeout=timeout),
        )


class StaticTask(CollectionTask):
    """A task whose work is a fixed table of (filename, kubectl args)."""

    queries: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        for filename, args in self.queries:
            yield self.item(filename, *args)


class ClusterInfoTask(StaticTask):
    name = "cluster-info"
    description = "Cluster information (nodes, version, components, API surface)"
    subtree = "cluster-info"
    queries = (
        ("cluster-info.txt", ("cluster-info",)),
        ("version.txt", ("version",)),
        ("nodes.txt", ("get", "nodes", "-o", "wide")),
        ("nodes.yaml", ("get", "nodes", "-o", "yaml")),
        ("nodes-usage.txt", ("top", "nodes")),
        ("component-status.txt", ("get", "componentstatuses")),
        ("api-resources.txt", ("api-resources",)),
        ("api-services.txt", ("get", "apiservices")),
    )


class EventsTask(CollectionTask):
    name = "events"
    description = "Events and warnings across all namespaces"
    subtree = "events"

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        yield self.item("all-events.txt", "get", "events", "--all-namespaces", "--sort-by=.lastTimestamp")
        yield self.item("all-events.yaml", "get", "events", "--all-namespaces", "-o", "yaml")
        yield self.item(
            "warning-events.txt", "get", "events", "--all-namespaces", "--field-selector", "type=Warning"
        )
        for ns in ctx.namespaces:
            yield self.item(f"events-{ns}.txt", "get", "events", "-n", ns, "--sort-by=.lastTimestamp")


class ResourcesTask(StaticTask):
    name = "resources"
    description = "Workloads, storage, RBAC, quotas and networking across the cluster"
    subtree = "resources"
    queries = (
        ("all-resources.txt", ("get", "all", "--all-namespaces", "-o", "wide")),
        ("all-pods.txt", ("get", "pods", "--all-namespaces", "-o", "wide")),
        ("all-services.txt", ("get", "services", "--all-namespaces", "-o", "wide")),
        ("all-deployments.txt", ("get", "deployments", "--all-namespaces", "-o", "wide")),
        ("all-statefulsets.txt", ("get", "statefulsets", "--all-namespaces", "-o", "wide")),
        ("all-daemonsets.txt", ("get", "daemonsets", "--all-namespaces", "-o", "wide")),
        ("all-jobs.txt", ("get", "jobs", "--all-namespaces", "-o", "wide")),
        ("all-cronjobs.txt", ("get", "cronjobs", "--all-namespaces", "-o", "wide")),
        ("all-ingresses.txt", ("get", "ingresses", "--all-namespaces", "-o", "wide")),
        ("all-networkpolicies.txt", ("get", "networkpolicies", "--all-namespaces", "-o", "wide")),
        ("persistent-volumes.txt", ("get", "pv", "-o", "wide")),
        ("persistent-volumes.yaml", ("get", "pv", "-o", "yaml")),
        ("persistent-volume-claims.txt", ("get", "pvc", "--all-namespaces", "-o", "wide")),
        ("storage-classes.txt", ("get", "storageclasses", "-o", "wide")),
        ("cluster-roles.yaml", ("get", "clusterroles", "-o", "yaml")),
        ("cluster-role-bindings.yaml", ("get", "clusterrolebindings", "-o", "yaml")),
        ("service-accounts.yaml", ("get", "serviceaccounts", "--all-namespaces", "-o", "yaml")),
        ("resource-quotas.yaml", ("get", "resourcequotas", "--all-namespaces", "-o", "yaml")),
        ("limit-ranges.yaml", ("get", "limitranges", "--all-namespaces", "-o", "yaml")),
        ("pods-usage.txt", ("top", "pods", "--all-namespaces")),
    )


class NamespaceDataTask(CollectionTask):
    name = "namespaces"
    description = "Per-namespace workloads, storage and pod descriptions"
    subtree = "namespaces"

    def directories(self, ctx: CollectionContext) -> list[PurePosixPath]:
        return [namespace_dir(ns, directory) for ns in ctx.namespaces for _, directory in NAMESPACED_KINDS]

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        fanout = ctx.fanout()
        return fanout.each_namespace(partial(self._namespace_items, fanout))

    def _namespace_items(self, fanout: NamespaceFanout, ns: str) -> Iterator[WorkItem]:
        for kind, directory in NAMESPACED_KINDS:
            for fmt, ext in (("yaml", "yaml"), ("wide", "txt")):
                yield WorkItem(
                    task=self.name,
                    name=f"{ns} {kind} ({fmt})",
                    path=namespace_dir(ns, directory, f"{directory}.{ext}"),
                    query=Query(args=("get", kind, "-n", ns, "-o", fmt)),
                )
        yield from fanout.each_pod(
            self.name,
            ns,
            lambda pod: [pod_describe_item(self.name, pod)],
            failure_path=namespace_dir(ns, "pods", "pod-discovery.txt"),
        )


class SecretsTask(CollectionTask):
    """Credential objects, kept in their own top-level subtree so they can be found and handled."""

    name = "secrets"
    description = "Secrets (SENSITIVE DATA)"
    subtree = "secrets"

    def directories(self, ctx: CollectionContext) -> list[PurePosixPath]:
        return [PurePosixPath(self.subtree, ns) for ns in ctx.namespaces]

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        logger.warning("Collecting secrets (SENSITIVE DATA)...")
        for ns in ctx.namespaces:
            yield self.item(f"{ns}/secrets.yaml", "get", "secrets", "-n", ns, "-o", "yaml")
            yield self.item(f"{ns}/secrets-list.txt", "get", "secrets", "-n", ns)


class ReleaseManagerTask(CollectionTask):
    """Helm releases; skipped when helm is not installed."""

    name = "helm"
    description = "Helm charts and releases"
    subtree = "helm"

    # (suffix, helm args before the release name)
    release_queries: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("all.yaml", ("get", "all")),
        ("values.yaml", ("get", "values")),
        ("manifest.yaml", ("get", "manifest")),
        ("notes.txt", ("get", "notes")),
        ("history.txt", ("history",)),
    )

    def is_available(self, ctx: CollectionContext) -> bool:
        return ctx.executor.is_available("helm")

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        yield self.item("releases.txt", "list", "--all-namespaces", tool="helm")
        yield self.item("releases.yaml", "list", "--all-namespaces", "-o", "yaml", tool="helm")
        yield from ctx.fanout().each_namespace(partial(self._namespace_items, ctx))

    def _namespace_items(self, ctx: CollectionContext, ns: str) -> Iterator[WorkItem]:
        listing = ctx.executor.execute(Query(tool="helm", args=("list", "-n", ns, "-q")))
        yield WorkItem(
            task=self.name,
            name=f"{ns} release list",
            path=PurePosixPath(self.subtree, ns, "release-list.txt"),
            producer=replay(listing),
        )
        if not listing.succeeded:
            logger.warning("Failed to list Helm releases in %s: %s", ns, listing.diagnostic)
            return
        for release in listing.stdout.decode(errors="replace").split():
            logger.info("Collecting Helm release: %s in namespace %s", release, ns)
            for suffix, args in self.release_queries:
                yield WorkItem(
                    task=self.name,
                    name=f"{ns}/{release} {suffix}",
                    path=PurePosixPath(self.subtree, ns, f"{release}-{suffix}"),
                    query=Query(tool="helm", args=(*args, release, "-n", ns)),
                )


def unique_images(pods: Sequence[PodDescriptor]) -> list[str]:
    """Sorted, deduplicated image references, init containers included."""
    return sorted({image.image for pod in pods for image in pod.images if image.image})


def render_image_inventory(pods: Sequence[PodDescriptor]) -> dict[str, str]:
    """Text artifacts of the image inventory, keyed by filename."""
    pod_images, with_policy, init_images = [], [], []
    for pod in pods:
        regular = [i for i in pod.images if not i.init]
        init = [i for i in pod.images if i.init]
        pod_images.append(f"{pod.namespace}\t{pod.name}\t{' '.join(i.image for i in regular)}")
        with_policy.append(
            f"{pod.namespace}\t{pod.name}\t" + "\t".join(f"{i.image} ({i.pull_policy})" for i in regular)
        )
        if init:
            init_images.append(f"{pod.namespace}\t{pod.name}\t{' '.join(i.image for i in init)}")

    def text(lines: list[str]) -> str:
        return "".join(f"{line}\n" for line in lines)

    return {
        "pod-images.txt": text(pod_images),
        "unique-images.txt": text(unique_images(pods)),
        "images-with-policy.txt": text(with_policy),
        "init-container-images.txt": text(init_images),
    }


class ImageInventoryTask(CollectionTask):
    name = "images"
    description = "Container images inventory"
    subtree = "images"

    filenames = ("pod-images.txt", "unique-images.txt", "images-with-policy.txt", "init-container-images.txt")

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        try:
            pods = ctx.inspector.list_all_pods()
            rendered = {k: QueryResult.ok(v) for k, v in render_image_inventory(pods).items()}
        except DISCOVERY_ERRORS as e:
            logger.warning("Failed to list pods for image inventory: %s", e)
            failure = QueryResult.failed(f"failed to list pods across all namespaces: {e}")
            rendered = dict.fromkeys(self.filenames, failure)
        for filename in self.filenames:
            yield WorkItem(
                task=self.name,
                name=filename,
                path=PurePosixPath(self.subtree, filename),
                producer=replay(rendered[filename]),
            )


class PodLogsTask(CollectionTask):
    name = "logs"
    description = "Pod logs (current and previous)"
    subtree = "namespaces"

    def directories(self, ctx: CollectionContext) -> list[PurePosixPath]:
        return [namespace_dir(ns, "logs") for ns in ctx.namespaces]

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        fanout = ctx.fanout()
        expand = partial(pod_log_items, self.name, timeout=ctx.log_timeout)
        return fanout.each_namespace(
            lambda ns: fanout.each_pod(
                self.name, ns, expand, failure_path=namespace_dir(ns, "logs", "pod-discovery.txt")
            )
        )


class ConfigMapsTask(StaticTask):
    name = "configs"
    description = "ConfigMaps across all namespaces"
    subtree = "configs"
    queries = (("all-configmaps.yaml", ("get", "configmaps", "--all-namespaces", "-o", "yaml")),)


class CommandTask(CollectionTask):
    """Extension task: arbitrary commands written to custom/<task>/<command>.txt."""

    def __init__(self, name: str, commands: Sequence[ExtraCommand], description: str = "") -> None:
        seen: set[str] = set()
        for command in commands:
            if command.name in seen:
                raise ValueError(f"duplicate command name in {name}: {command.name}")
            seen.add(command.name)
        self.name = name
        self.subtree = PurePosixPath(CUSTOM_DIR, name).as_posix()
        self.commands = tuple(commands)
        self.description = description or f"Custom commands ({name})"

    def plan(self, ctx: CollectionContext) -> Iterator[WorkItem]:
        for command in self.commands:
            tool, *args = command.command
            yield self.item(f"{command.name}.txt", *args, tool=tool, timeout=command.timeout)


HOST_INFO_COMMANDS: tuple[ExtraCommand, ...] = (
    ExtraCommand(name="py-version", command=["python3", "--version"]),
    ExtraCommand(name="java-version", command=["java", "--version"]),
    ExtraCommand(name="kubectl-version", command=["kubectl", "version"]),
    ExtraCommand(name="helm-version", command=["helm", "version"]),
    ExtraCommand(name="git-version", command=["git", "version"]),
    ExtraCommand(name="last-reboot", command=["who", "-b"]),
    ExtraCommand(name="user", command=["whoami"]),
    ExtraCommand(name="resource-usage", command=["df", "-h"]),
)


def builtin_tasks() -> list[CollectionTask]:
    """Built-in tasks in collection order."""
    return [
        ClusterInfoTask(),
        EventsTask(),
        ResourcesTask(),
        NamespaceDataTask(),
        SecretsTask(),
        ReleaseManagerTask(),
        ImageInventoryTask(),
        PodLogsTask(),
        ConfigMapsTask(),
    ]


def host_info_task() -> CommandTask:
    return CommandTask("host-info", HOST_INFO_COMMANDS, description="Local tool versions, user and disk usage")

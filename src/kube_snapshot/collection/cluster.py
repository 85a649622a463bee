"""Discover pods and cluster identity through the Kubernetes API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from kube_snapshot.collection.models import ContainerImage, PodDescriptor
from kube_snapshot.errors import PreflightError

logger = logging.getLogger(__name__)

# Errors a discovery call can raise; callers degrade to an empty result on these
DISCOVERY_ERRORS: tuple[type[BaseException], ...] = (ApiException, HTTPError, OSError)

IN_CLUSTER_CONTEXT = "in-cluster"

# Page size for pod listings
PAGE_LIMIT = 500


def _load_kube_config(kubeconfig_path: str | None, context: str | None) -> tuple[client.Configuration, bool]:
    """Load in-cluster or kubeconfig-based configuration; returns (configuration, in_cluster)."""
    if not kubeconfig_path and not context:
        try:
            config.load_incluster_config()
            return client.Configuration.get_default_copy(), True
        except config.ConfigException:
            pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    cfg = client.Configuration()
    config.load_kube_config(client_configuration=cfg, **kwargs)
    return cfg, False


def _build_pod_descriptor(pod: Any) -> PodDescriptor:
    """Build PodDescriptor from V1Pod."""
    spec = pod.spec
    containers = list(getattr(spec, "containers", None) or [])
    init_containers = list(getattr(spec, "init_containers", None) or [])
    images = [
        ContainerImage(
            container=c.name,
            image=c.image or "",
            pull_policy=getattr(c, "image_pull_policy", None) or "",
            init=False,
        )
        for c in containers
    ]
    images += [
        ContainerImage(
            container=c.name,
            image=c.image or "",
            pull_policy=getattr(c, "image_pull_policy", None) or "",
            init=True,
        )
        for c in init_containers
    ]
    return PodDescriptor(
        namespace=pod.metadata.namespace or "default",
        name=pod.metadata.name,
        containers=tuple(c.name for c in containers),
        init_containers=tuple(c.name for c in init_containers),
        images=tuple(images),
    )


class ClusterInspector:
    """Read-only view of the cluster used for discovery, identity and reachability."""

    def __init__(
        self,
        kubeconfig: str | Path | None = None,
        context: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.kubeconfig = str(kubeconfig) if kubeconfig else None
        self.context = context
        self.timeout = timeout
        try:
            cfg, self.in_cluster = _load_kube_config(self.kubeconfig, context)
        except (config.ConfigException, OSError) as e:
            raise PreflightError(f"cannot load Kubernetes configuration: {e}") from e
        self._api = client.ApiClient(cfg)
        self._core = client.CoreV1Api(self._api)

    def current_context(self) -> str:
        """Name of the context this run collects from."""
        if self.in_cluster:
            return IN_CLUSTER_CONTEXT
        if self.context:
            return self.context
        try:
            _, active = config.list_kube_config_contexts(config_file=self.kubeconfig)
        except (config.ConfigException, OSError) as e:
            raise PreflightError(f"cannot determine current context: {e}") from e
        if not active:
            raise PreflightError("kubeconfig has no current context")
        return active["name"]

    def check_reachable(self) -> str:
        """Ask the API server for its version; raises PreflightError if it does not answer."""
        try:
            info = client.VersionApi(self._api).get_code(_request_timeout=self.timeout)
        except DISCOVERY_ERRORS as e:
            raise PreflightError(f"cannot reach the Kubernetes API server: {e}") from e
        return getattr(info, "git_version", "") or ""

    def discover_pods(self, namespace: str) -> list[PodDescriptor]:
        """Point-in-time pod list for one namespace, in name order."""
        pods = [
            _build_pod_descriptor(p)
            for p in self._paginate(self._core.list_namespaced_pod, namespace=namespace)
        ]
        return sorted(pods, key=lambda p: p.name)

    def list_all_pods(self) -> list[PodDescriptor]:
        """Point-in-time pod list across all namespaces, in (namespace, name) order."""
        pods = [_build_pod_descriptor(p) for p in self._paginate(self._core.list_pod_for_all_namespaces)]
        return sorted(pods, key=lambda p: (p.namespace, p.name))

    def _paginate(self, list_call: Any, **kwargs: Any) -> Iterator[Any]:
        token = None
        while True:
            if token:
                kwargs["_continue"] = token
            page = list_call(limit=PAGE_LIMIT, _request_timeout=self.timeout, **kwargs)
            yield from page.items or []
            token = getattr(page.metadata, "_continue", None) if page.metadata else None
            if not token:
                return

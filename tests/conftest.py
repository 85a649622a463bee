"""
Shared pytest fixtures for kube-snapshot tests.

This module provides:
- FakeExecutor: pattern-matched canned responses for kubectl/helm queries
- FakeInspector: in-memory pod discovery, identity and reachability
- Orchestrator factory wired to both, writing into tmp_path
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Pattern, Set, Tuple, Union

import pytest
from kubernetes.client.rest import ApiException

from kube_snapshot.collection.models import ContainerImage, PodDescriptor, Query, QueryResult
from kube_snapshot.config import Settings
from kube_snapshot.runner.orchestrator import Orchestrator

PREVIOUS_LOGS_ERROR = 'Error from server (BadRequest): previous terminated container "app" in pod "web-1" not found'


# =============================================================================
# Query mocking
# =============================================================================

class FakeExecutor:
    """
    Stand-in for QueryExecutor with pattern-matched responses.

    Patterns are regexes searched in "<tool> <args...>"; the first registered
    match wins. Unmatched queries succeed with a predictable body so tests
    can assert content was routed to the right file.

    Usage:
        def test_something(fake_executor):
            fake_executor.register(r"get nodes", QueryResult.failed("forbidden"))
    """

    def __init__(self, tools: Optional[Set[str]] = None):
        self._responses: List[Tuple[Pattern, QueryResult]] = []
        self.calls: List[Query] = []
        self.tools = {"kubectl", "helm"} if tools is None else set(tools)
        self.context: Optional[str] = None

    def register(self, pattern: Union[str, Pattern], result: QueryResult) -> None:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        self._responses.append((pattern, result))

    def is_available(self, tool: str) -> bool:
        return tool in self.tools

    def execute(self, query: Query) -> QueryResult:
        self.calls.append(query)
        text = query.describe()
        for pattern, result in self._responses:
            if pattern.search(text):
                return result
        return QueryResult.ok(f"output of {text}\n")

    def was_called_with(self, pattern: str) -> bool:
        return any(re.search(pattern, q.describe()) for q in self.calls)


# =============================================================================
# Cluster discovery mocking
# =============================================================================

def make_pod(
    namespace: str,
    name: str,
    containers: Dict[str, str],
    init_containers: Optional[Dict[str, str]] = None,
    pull_policy: str = "IfNotPresent",
) -> PodDescriptor:
    """Build a PodDescriptor from {container: image} mappings."""
    init_containers = init_containers or {}
    images = [ContainerImage(container=c, image=i, pull_policy=pull_policy) for c, i in containers.items()]
    images += [
        ContainerImage(container=c, image=i, pull_policy=pull_policy, init=True)
        for c, i in init_containers.items()
    ]
    return PodDescriptor(
        namespace=namespace,
        name=name,
        containers=tuple(containers),
        init_containers=tuple(init_containers),
        images=tuple(images),
    )


@dataclass
class FakeInspector:
    """In-memory replacement for ClusterInspector."""

    pods: Dict[str, List[PodDescriptor]] = field(default_factory=dict)
    failing_namespaces: Set[str] = field(default_factory=set)
    context: str = "test-cluster"
    reachable: bool = True
    in_cluster: bool = False
    discovery_calls: List[str] = field(default_factory=list)

    def check_reachable(self) -> str:
        if not self.reachable:
            from kube_snapshot.errors import PreflightError

            raise PreflightError("cannot reach the Kubernetes API server")
        return "v1.30.2"

    def current_context(self) -> str:
        return self.context

    def discover_pods(self, namespace: str) -> List[PodDescriptor]:
        self.discovery_calls.append(namespace)
        if namespace in self.failing_namespaces:
            raise ApiException(status=403, reason="Forbidden")
        return list(self.pods.get(namespace, []))

    def list_all_pods(self) -> List[PodDescriptor]:
        if self.failing_namespaces:
            raise ApiException(status=403, reason="Forbidden")
        return [p for ns in sorted(self.pods) for p in self.pods[ns]]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_executor() -> FakeExecutor:
    executor = FakeExecutor()
    executor.register(
        r"--previous",
        QueryResult(exit_code=1, stderr=PREVIOUS_LOGS_ERROR.encode(), diagnostic=PREVIOUS_LOGS_ERROR),
    )
    executor.register(r"^helm list -n \S+ -q$", QueryResult.ok(""))
    return executor


@pytest.fixture
def web_pod() -> PodDescriptor:
    return make_pod("default", "web-1", {"app": "nginx:1.25", "sidecar": "envoy:1.29"})


@pytest.fixture
def fake_inspector(web_pod) -> FakeInspector:
    return FakeInspector(pods={"default": [web_pod]})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        output_dir=tmp_path,
        namespaces=["default"],
        compress=False,
    )


class Clock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now.replace(second=(self.now.second + 1) % 60)
        return current


@pytest.fixture
def make_orchestrator(settings, fake_executor, fake_inspector) -> Callable[..., Orchestrator]:
    """Factory for orchestrators wired to the fakes; keyword overrides pass through."""

    def factory(**overrides) -> Orchestrator:
        kwargs = dict(
            settings=settings,
            executor=fake_executor,
            inspector=fake_inspector,
            clock=Clock(datetime(2026, 10, 17, 9, 30, 0, tzinfo=timezone.utc)),
        )
        kwargs.update(overrides)
        return Orchestrator(**kwargs)

    return factory

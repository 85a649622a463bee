"""Collection layer: queries, output sink, tasks and namespace fan-out."""

from kube_snapshot.collection.cluster import ClusterInspector
from kube_snapshot.collection.executor import QueryExecutor
from kube_snapshot.collection.models import (
    Artifact,
    Outcome,
    PodDescriptor,
    Query,
    QueryResult,
    WorkItem,
)
from kube_snapshot.collection.sink import OutputSink
from kube_snapshot.collection.tasks import CollectionContext, CollectionTask, CommandTask

__all__ = [
    "Artifact",
    "ClusterInspector",
    "CollectionContext",
    "CollectionTask",
    "CommandTask",
    "Outcome",
    "OutputSink",
    "PodDescriptor",
    "Query",
    "QueryExecutor",
    "QueryResult",
    "WorkItem",
]

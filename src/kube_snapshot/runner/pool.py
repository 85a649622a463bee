"""Execute work items sequentially or through a bounded worker pool."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from functools import partial
from typing import Any, Iterable, Iterator

from kube_snapshot.collection.models import Artifact, Outcome, WorkItem
from kube_snapshot.collection.sink import OutputSink
from kube_snapshot.errors import SinkWriteError
from kube_snapshot.runner.summary import SummaryRecorder

logger = logging.getLogger(__name__)


class WorkRunner:
    """Runs each work item once and routes its content to the sink.

    With workers == 1 items run one after another in the calling thread.
    With more, items are dispatched to a ThreadPoolExecutor as workers free
    up. Setting `cancel_event` stops pulling from the plan in both modes; an
    item pulled but not yet started when it is set is recorded as skipped
    and nothing is written for it. Work never pulled is not recorded.
    """

    def __init__(
        self,
        executor: Any,
        sink: OutputSink,
        recorder: SummaryRecorder,
        workers: int = 1,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.executor = executor
        self.sink = sink
        self.recorder = recorder
        self.workers = max(1, workers)
        self.cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, items: Iterable[WorkItem]) -> None:
        if self.workers == 1:
            for item in self._dispatch(items):
                self.run_item(item)
            return

        # One slot per worker: an item is only pulled from the plan when a worker can start it
        slots = threading.BoundedSemaphore(self.workers)
        futures: list[Future[Artifact]] = []
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="collect") as pool:
            try:
                for item in self._dispatch(items, slots):
                    future = pool.submit(self.run_item, item)
                    future.add_done_callback(partial(self._finished, slots))
                    futures.append(future)
                for future in as_completed(futures):
                    future.result()
            except SinkWriteError:
                # Output tree is unusable: stop dispatch, then propagate
                self.cancel_event.set()
                raise

    def _dispatch(
        self, items: Iterable[WorkItem], slots: threading.BoundedSemaphore | None = None
    ) -> Iterator[WorkItem]:
        """Pull planned items until cancelled.

        Planning can itself query the cluster (pod discovery, release
        listings), so cancellation is checked before the plan is advanced.
        """
        planned = iter(items)
        while True:
            if slots is not None:
                slots.acquire()
            if self.cancelled:
                return
            item = next(planned, None)
            if item is None:
                return
            yield item

    def _finished(self, slots: threading.BoundedSemaphore, future: Future[Artifact]) -> None:
        slots.release()
        if isinstance(future.exception(), SinkWriteError):
            self.cancel_event.set()

    def run_item(self, item: WorkItem) -> Artifact:
        path = item.path.as_posix()
        if self.cancelled:
            artifact = Artifact(
                task=item.task, name=item.name, path=path, outcome=Outcome.SKIPPED, diagnostic="cancelled"
            )
            self.recorder.record(artifact)
            return artifact

        if item.producer is not None:
            result = item.producer()
        else:
            result = self.executor.execute(item.query)
        size = self.sink.write(item.path, result.content())

        if result.succeeded:
            outcome = Outcome.SUCCESS
        else:
            outcome = Outcome.FAILURE
            log = logger.debug if item.optional else logger.warning
            log("Failed to collect %s: %s", item.name, result.diagnostic)
        artifact = Artifact(
            task=item.task,
            name=item.name,
            path=path,
            outcome=outcome,
            size=size,
            diagnostic=result.diagnostic,
            optional=item.optional,
        )
        self.recorder.record(artifact)
        return artifact

from __future__ import annotations

import logging
from threading import Thread

from . import db
from .cluster import ClusterClient
from .models import Identity, PlatformAdmin, Resource, fmt
from .reconciler import Reconciler
from .runtime import RuntimeState
from .settings import settings
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Controller:
    """Feeds PlatformAdmin keys to a fixed pool of reconcile workers.

    Triggers come from the cluster watch: a PlatformAdmin event enqueues the
    object itself, a child event enqueues every PlatformAdmin owning it.
    """

    def __init__(
        self,
        client: ClusterClient,
        reconciler: Reconciler,
        workers: int = 3,
        queue: WorkQueue | None = None,
        runtime: RuntimeState | None = None,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.client = client
        self.reconciler = reconciler
        self.workers = workers
        self.queue = queue or WorkQueue(settings.backoff_base_s, settings.backoff_max_s)
        self.runtime = runtime or reconciler.runtime
        self._threads: list[Thread] = []
        client.watch(self.on_event)

    def on_event(self, event: str, obj: Resource) -> None:
        if isinstance(obj, PlatformAdmin):
            self.enqueue(obj.identity)
            return
        for ref in obj.metadata.owner_references:
            if ref.kind == PlatformAdmin.KIND:
                self.enqueue(Identity(obj.metadata.namespace, ref.name))

    def enqueue(self, identity: Identity) -> None:
        self.queue.add(str(identity))

    def enqueue_all(self) -> int:
        admins = self.client.list(PlatformAdmin)
        for admin in admins:
            self.enqueue(admin.identity)
        return len(admins)

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._threads = [
            Thread(target=self._worker, name=f"par-worker-{i}", daemon=True) for i in range(self.workers)
        ]
        for t in self._threads:
            t.start()
        db.log_event("INFO", fmt("controller started with %d workers", self.workers))

    def stop(self, timeout_s: float = 5.0) -> None:
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout_s)

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: str) -> None:
        """Reconcile one key and schedule its next attempt."""
        identity = Identity.parse(key)
        try:
            result = self.reconciler.reconcile(identity)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(fmt("Reconcile %s failed, retrying in %.3fs: %s: %s", key, delay, type(e).__name__, e))
            self.runtime.record_result(key, "error", f"{type(e).__name__}: {e}")
            return

        self.queue.forget(key)
        if result.requeue_after:
            self.queue.add_after(key, result.requeue_after)
            self.runtime.record_result(key, "requeue", f"requeue after {result.requeue_after}s")
        else:
            self.runtime.record_result(key, "success")

from __future__ import annotations

import logging

from . import db
from .cluster import ClusterClient
from .errors import NotFound
from .models import (
    LABEL_CONFIGMAP,
    LABEL_DEPLOYMENT,
    LABEL_GENERATE,
    LABEL_SERVICE,
    ConfigObject,
    Exposure,
    PlatformAdmin,
    Resource,
    WorkloadSet,
    fmt,
    is_owned_by,
    remove_owner_reference,
)
from .runtime import RuntimeState

logger = logging.getLogger(__name__)

GENERATED_KINDS: dict[type[Resource], str] = {
    ConfigObject: LABEL_CONFIGMAP,
    Exposure: LABEL_SERVICE,
    WorkloadSet: LABEL_DEPLOYMENT,
}


class OwnershipCollector:
    """Drops a parent's ownership from generated children it no longer wants.

    Best-effort: failures are logged, recorded as events and counted in
    RuntimeState.gc_failures, but never raised.
    """

    def __init__(self, client: ClusterClient, runtime: RuntimeState):
        self.client = client
        self.runtime = runtime

    def collect(self, admin: PlatformAdmin, kind: type[Resource], keep: set[str]) -> list[str]:
        """Release every generated `kind` object not named in keep.

        Returns the names of objects released (trimmed or deleted).
        """
        label_value = GENERATED_KINDS[kind]
        namespace = admin.metadata.namespace
        try:
            candidates = self.client.list(kind, namespace, labels={LABEL_GENERATE: label_value})
        except Exception as e:
            self._failed(admin, kind, f"list {kind.KIND} failed: {type(e).__name__}: {e}")
            return []

        released: list[str] = []
        for obj in candidates:
            if obj.metadata.name in keep or not is_owned_by(obj, admin.metadata.uid):
                continue
            try:
                self.remove_owner(admin, obj)
                released.append(obj.metadata.name)
            except NotFound:
                continue
            except Exception as e:
                self._failed(admin, kind, f"release {kind.KIND} {obj.identity} failed: {type(e).__name__}: {e}")
        return released

    def remove_owner(self, admin: PlatformAdmin, obj: Resource) -> None:
        if not remove_owner_reference(obj, admin.metadata.uid):
            return
        if not obj.metadata.owner_references:
            self.client.delete(type(obj), obj.metadata.namespace, obj.metadata.name)
            logger.info(fmt("deleted unowned %s %s", obj.KIND, obj.identity))
        else:
            self.client.update(obj)
            logger.info(fmt("released ownership of %s %s", obj.KIND, obj.identity))

    def _failed(self, admin: PlatformAdmin, kind: type[Resource], message: str) -> None:
        total = self.runtime.record_gc_failure(kind.KIND)
        msg = fmt(message)
        logger.warning("%s (gc failures for %s: %d)", msg, kind.KIND, total)
        db.log_event("WARN", msg, namespace=admin.metadata.namespace, name=admin.metadata.name)

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass

from . import db
from .catalog import Catalog
from .cluster import ClusterClient
from .deletion import DeletionHandler
from .errors import DecodeError, NotFound, ReconcileError, aggregate
from .gc import OwnershipCollector
from .models import (
    FINALIZER,
    ConfigObject,
    Exposure,
    Identity,
    PlatformAdmin,
    PlatformAdminStatus,
    WorkloadSet,
    add_finalizer,
    fmt,
)
from .resolver import desired_components
from .runtime import RuntimeState
from .settings import settings
from .status import (
    COMPONENT_AVAILABLE,
    COMPONENT_PROVISIONING,
    COMPONENT_PROVISIONING_FAILED,
    CONFIGMAP_AVAILABLE,
    CONFIGMAP_PROVISIONING_FAILED,
    aggregate_ready,
    new_condition,
    set_component_counts,
    set_condition,
)
from .sync import ChildSynchronizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result:
    requeue_after: float | None = None


class Reconciler:
    """Converges the children of one PlatformAdmin toward its desired state.

    A pass may start from any intermediate state: every step reads what is
    stored and only writes differences, so rerunning a pass is harmless.
    """

    def __init__(
        self,
        client: ClusterClient,
        catalog: Catalog,
        runtime: RuntimeState | None = None,
        requeue_after_s: float | None = None,
    ):
        self.client = client
        self.catalog = catalog
        self.runtime = runtime or RuntimeState()
        self.requeue_after_s = settings.requeue_after_s if requeue_after_s is None else requeue_after_s
        self.collector = OwnershipCollector(client, self.runtime)
        self.deleter = DeletionHandler(client, catalog)

    def reconcile(self, identity: Identity) -> Result:
        """Run one pass. Raises on hard errors; status is persisted first."""
        logger.info(fmt("Reconcile PlatformAdmin %s", identity))
        try:
            admin = self.client.get(PlatformAdmin, identity.namespace, identity.name)
        except NotFound:
            return Result()

        status = copy.deepcopy(admin.status)

        if admin.metadata.deletion_timestamp:
            return self._reconcile_delete(admin, status)

        was_ready = admin.status.ready
        result = Result()
        err: Exception | None = None
        try:
            result = self._reconcile_normal(admin, status)
        except Exception as e:
            err = e

        final = aggregate([err, self._persist_status(admin, status)])
        if final is not None:
            logger.error(fmt("Reconcile PlatformAdmin %s failed: %s", identity, final))
            raise final

        if status.ready != was_ready:
            msg = fmt("PlatformAdmin %s is %s", identity, "ready" if status.ready else "no longer ready")
            db.log_event("INFO" if status.ready else "WARN", msg, namespace=identity.namespace, name=identity.name)
        return result

    def _persist_status(self, admin: PlatformAdmin, status: PlatformAdminStatus) -> Exception | None:
        admin.status = status
        try:
            self.client.update_status(admin)
        except Exception as e:
            logger.error(fmt("Update the status of PlatformAdmin %s failed: %s", admin.identity, e))
            return e
        return None

    def _reconcile_delete(self, admin: PlatformAdmin, status: PlatformAdminStatus) -> Result:
        logger.debug(fmt("ReconcileDelete PlatformAdmin %s", admin.identity))
        try:
            self.deleter.handle(admin)
        except Exception as e:
            # The finalizer is still in place, so the object still exists.
            final = aggregate([e, self._persist_status(admin, status)])
            logger.error(fmt("Delete PlatformAdmin %s failed: %s", admin.identity, final))
            raise final
        return Result()

    def _reconcile_normal(self, admin: PlatformAdmin, status: PlatformAdminStatus) -> Result:
        key = str(admin.identity)
        logger.debug(fmt("ReconcileNormal PlatformAdmin %s", key))

        if add_finalizer(admin, FINALIZER):
            admin.metadata = self.client.update(admin).metadata
        status.initialized = True

        try:
            components = desired_components(admin, self.catalog)
        except DecodeError as e:
            status.ready = False
            set_condition(status, new_condition(COMPONENT_AVAILABLE, False, COMPONENT_PROVISIONING_FAILED, str(e)))
            raise ReconcileError(f"unexpected error while resolving components for {key}") from e

        sync = ChildSynchronizer(self.client, admin)

        logger.debug(fmt("ReconcileConfigmap PlatformAdmin %s", key))
        try:
            config_names = sync.sync_config_objects(components)
        except Exception as e:
            status.ready = False
            set_condition(status, new_condition(CONFIGMAP_AVAILABLE, False, CONFIGMAP_PROVISIONING_FAILED, str(e)))
            raise ReconcileError(f"unexpected error while reconciling configmap for {key}") from e
        set_condition(status, new_condition(CONFIGMAP_AVAILABLE, True))
        self.collector.collect(admin, ConfigObject, config_names)

        logger.debug(fmt("ReconcileComponent PlatformAdmin %s", key))
        ready = 0
        try:
            for component in components:
                if sync.sync_component(component):
                    ready += 1
        except Exception as e:
            status.ready = False
            set_component_counts(status, ready, len(components))
            set_condition(status, new_condition(COMPONENT_AVAILABLE, False, COMPONENT_PROVISIONING_FAILED, str(e)))
            raise ReconcileError(f"unexpected error while reconciling component for {key}") from e
        set_component_counts(status, ready, len(components))

        # Keep sets are per kind: a component that drops its service or its
        # deployment loses that child even though the component name survives.
        self.collector.collect(admin, Exposure, {c.name for c in components if c.service is not None})
        self.collector.collect(admin, WorkloadSet, {c.name for c in components if c.deployment is not None})

        if ready < len(components):
            status.ready = False
            set_condition(
                status,
                new_condition(
                    COMPONENT_AVAILABLE,
                    False,
                    COMPONENT_PROVISIONING,
                    f"{ready}/{len(components)} components ready",
                ),
            )
            return Result(requeue_after=self.requeue_after_s)

        set_condition(status, new_condition(COMPONENT_AVAILABLE, True))
        status.ready = aggregate_ready(status)
        return Result()

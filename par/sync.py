from __future__ import annotations

import logging
from typing import Callable

from . import db
from .cluster import ClusterClient
from .errors import NotFound
from .models import (
    ANNOTATION_TOPOLOGY_KEY,
    ANNOTATION_TOPOLOGY_NODEPOOL,
    LABEL_CONFIGMAP,
    LABEL_CURRENT_NODEPOOL,
    LABEL_DEPLOYMENT,
    LABEL_GENERATE,
    LABEL_SERVICE,
    Component,
    ConfigObject,
    Exposure,
    NodeSelectorRequirement,
    ObjectMeta,
    PlatformAdmin,
    Pool,
    Resource,
    WorkloadSet,
    WorkloadSetSpec,
    fmt,
    is_owned_by,
    set_owner_reference,
)

logger = logging.getLogger(__name__)


def pool_for(pool_name: str) -> Pool:
    """One replica, pinned to the nodes of pool_name."""
    return Pool(
        name=pool_name,
        replicas=1,
        node_selector=[NodeSelectorRequirement(key=LABEL_CURRENT_NODEPOOL, operator="In", values=[pool_name])],
    )


def workload_set_ready(ws: WorkloadSet, pool_name: str) -> bool:
    st = ws.status
    return pool_name in st.pool_replicas and st.ready_replicas == st.replicas


class ChildSynchronizer:
    """Upserts the children of one PlatformAdmin, one component at a time.

    Every write goes straight to the cluster client; the first failure
    propagates and ends the pass.
    """

    def __init__(self, client: ClusterClient, admin: PlatformAdmin):
        self.client = client
        self.admin = admin

    @property
    def namespace(self) -> str:
        return self.admin.metadata.namespace

    def _upsert(self, desired: Resource, mutate: Callable[[Resource], None]) -> Resource:
        """Create desired, or bring the stored object in line with it.

        The parent is added as a non-controller owner, so several parents may
        share one child. Nothing is written when the stored object already
        matches.
        """
        try:
            existing = self.client.get(type(desired), self.namespace, desired.metadata.name)
        except NotFound:
            set_owner_reference(desired, self.admin)
            created = self.client.create(desired)
            logger.info(fmt("created %s %s", created.KIND, created.identity))
            return created

        before = existing.deepcopy()
        existing.metadata.labels.update(desired.metadata.labels)
        existing.metadata.annotations.update(desired.metadata.annotations)
        mutate(existing)
        set_owner_reference(existing, self.admin)
        if existing == before:
            return existing
        updated = self.client.update(existing)
        logger.info(fmt("updated %s %s", updated.KIND, updated.identity))
        return updated

    # --- config objects ---

    def sync_config_objects(self, components: list[Component]) -> set[str]:
        """Upsert the config objects of every component. Returns their names."""
        names: set[str] = set()
        for component in components:
            for cm in component.config_objects:
                if cm.metadata.name in names:
                    continue
                desired = ConfigObject(
                    metadata=ObjectMeta(
                        name=cm.metadata.name,
                        namespace=self.namespace,
                        labels={LABEL_GENERATE: LABEL_CONFIGMAP},
                    ),
                    data=dict(cm.data),
                )

                def _mutate(obj: Resource, data=desired.data) -> None:
                    obj.data = dict(data)

                self._upsert(desired, _mutate)
                names.add(desired.metadata.name)
        return names

    # --- exposures and workload-sets ---

    def sync_component(self, component: Component) -> bool:
        """Upsert the exposure and workload-set of one component.

        Returns whether the component is ready.
        """
        self.sync_exposure(component)
        if component.deployment is None:
            return True
        return self.sync_workload_set(component)

    def sync_exposure(self, component: Component) -> Exposure | None:
        if component.service is None:
            return None
        desired = Exposure(
            metadata=ObjectMeta(
                name=component.name,
                namespace=self.namespace,
                labels={LABEL_GENERATE: LABEL_SERVICE},
                # prefer endpoints in the same node pool
                annotations={ANNOTATION_TOPOLOGY_KEY: ANNOTATION_TOPOLOGY_NODEPOOL},
            ),
            spec=dict(component.service),
        )

        def _mutate(obj: Resource) -> None:
            obj.spec = dict(desired.spec)

        return self._upsert(desired, _mutate)

    def new_workload_set(self, component: Component) -> WorkloadSet:
        ws = WorkloadSet(
            metadata=ObjectMeta(
                name=component.name,
                namespace=self.namespace,
                labels={LABEL_GENERATE: LABEL_DEPLOYMENT},
            ),
            spec=WorkloadSetSpec(
                selector={"app": component.name},
                template={"labels": {"app": component.name}, "spec": dict(component.deployment or {})},
                pools=[pool_for(self.admin.spec.pool_name)],
            ),
        )
        set_owner_reference(ws, self.admin, controller=True)
        return ws

    def sync_workload_set(self, component: Component) -> bool:
        pool_name = self.admin.spec.pool_name
        try:
            ws = self.client.get(WorkloadSet, self.namespace, component.name)
        except NotFound:
            created = self.client.create(self.new_workload_set(component))
            logger.info(fmt("created %s %s with pool %s", created.KIND, created.identity, pool_name))
            return False

        if ws.pool(pool_name) is not None:
            if not is_owned_by(ws, self.admin.metadata.uid):
                # pool survived an earlier collection of this component
                original = ws.deepcopy()
                set_owner_reference(ws, self.admin)
                ws = self.client.patch(ws, original)
                logger.info(fmt("re-owned %s %s", ws.KIND, ws.identity))
            return workload_set_ready(ws, pool_name)

        self.join_pool(ws)
        return False

    def join_pool(self, ws: WorkloadSet) -> WorkloadSet:
        """Add this parent's pool to a shared workload-set (no-op when present)."""
        pool_name = self.admin.spec.pool_name
        if ws.pool(pool_name) is not None:
            return ws
        original = ws.deepcopy()
        ws.spec.pools.append(pool_for(pool_name))
        set_owner_reference(ws, self.admin)
        patched = self.client.patch(ws, original)
        msg = fmt("joined pool %s of %s %s", pool_name, ws.KIND, ws.identity)
        logger.info(msg)
        db.log_event("INFO", msg, namespace=self.namespace, name=self.admin.metadata.name)
        return patched

from __future__ import annotations

import logging

from . import db
from .catalog import Catalog
from .cluster import ClusterClient
from .errors import NotFound
from .models import FINALIZER, PlatformAdmin, WorkloadSet, fmt, remove_finalizer
from .resolver import component_names

logger = logging.getLogger(__name__)


def remove_pool(ws: WorkloadSet, pool_name: str) -> bool:
    """Drop the pool entry named pool_name. Other pools are left untouched."""
    for i, pool in enumerate(ws.spec.pools):
        if pool.name == pool_name:
            del ws.spec.pools[i]
            return True
    return False


class DeletionHandler:
    """Detaches a deleting PlatformAdmin from shared workload-sets, then
    releases its finalizer.

    Config objects and exposures are not touched here: once the finalizer is
    gone the store's owner cascade reclaims them.
    """

    def __init__(self, client: ClusterClient, catalog: Catalog):
        self.client = client
        self.catalog = catalog

    def handle(self, admin: PlatformAdmin) -> PlatformAdmin:
        namespace = admin.metadata.namespace
        pool_name = admin.spec.pool_name

        for name in sorted(component_names(admin, self.catalog)):
            try:
                ws = self.client.get(WorkloadSet, namespace, name)
            except NotFound:
                continue
            original = ws.deepcopy()
            if not remove_pool(ws, pool_name):
                continue
            self.client.patch(ws, original)
            logger.info(fmt("left pool %s of %s %s", pool_name, ws.KIND, ws.identity))

        if remove_finalizer(admin, FINALIZER):
            admin = self.client.update(admin)
            msg = fmt("released finalizer of %s", admin.identity)
            logger.info(msg)
            db.log_event("INFO", msg, namespace=namespace, name=admin.metadata.name)
        return admin

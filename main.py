from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from par import db
from par.api_models import ApplyPlatformAdminRequest, WorkloadSetStatusRequest
from par.catalog import load_catalog
from par.cluster import ClusterClient
from par.controller import Controller
from par.errors import Conflict, NotFound
from par.models import (
    ANNOTATION_ADDITIONAL_DEPLOYMENTS,
    ANNOTATION_ADDITIONAL_SERVICES,
    Identity,
    ObjectMeta,
    PlatformAdmin,
    PlatformAdminSpec,
    WorkloadSet,
    WorkloadSetStatus,
)
from par.reconciler import Reconciler
from par.runtime import RuntimeState
from par.settings import settings

logger = logging.getLogger("par")

app = FastAPI(title="PlatformAdmin Reconciler")


@app.on_event("startup")
def startup() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db.init_db()
    client = ClusterClient()
    runtime = RuntimeState()
    catalog = load_catalog(settings.catalog_path)
    reconciler = Reconciler(client, catalog, runtime=runtime)
    controller = Controller(client, reconciler, workers=settings.workers, runtime=runtime)

    app.state.client = client
    app.state.runtime = runtime
    app.state.catalog = catalog
    app.state.reconciler = reconciler
    app.state.controller = controller

    if settings.start_controller:
        controller.start()
        n = controller.enqueue_all()
        logger.info("controller started, %d PlatformAdmin(s) queued", n)


@app.on_event("shutdown")
def shutdown() -> None:
    controller: Controller | None = getattr(app.state, "controller", None)
    if controller is not None:
        controller.stop()


def _get_admin(namespace: str, name: str) -> PlatformAdmin:
    try:
        return app.state.client.get(PlatformAdmin, namespace, name)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/health")
def health() -> dict:
    return {"status": "healthy"}


@app.get("/platformadmins")
def list_platformadmins(namespace: str | None = None) -> list[dict]:
    return [a.to_dict() for a in app.state.client.list(PlatformAdmin, namespace)]


@app.get("/platformadmins/{namespace}/{name}")
def get_platformadmin(namespace: str, name: str) -> dict:
    return _get_admin(namespace, name).to_dict()


@app.put("/platformadmins")
def apply_platformadmin(req: ApplyPlatformAdminRequest) -> dict:
    client: ClusterClient = app.state.client
    spec = PlatformAdminSpec(version=req.version, security=req.security, pool_name=req.pool_name)
    try:
        admin = client.get(PlatformAdmin, req.namespace, req.name)
    except NotFound:
        admin = PlatformAdmin(
            metadata=ObjectMeta(name=req.name, namespace=req.namespace, annotations=req.override_annotations()),
            spec=spec,
        )
        return client.create(admin).to_dict()

    if admin.metadata.deletion_timestamp:
        raise HTTPException(status_code=409, detail=f"{admin.identity} is being deleted")
    admin.spec = spec
    overrides = req.override_annotations()
    # an override left out of the request is withdrawn
    for key in (ANNOTATION_ADDITIONAL_DEPLOYMENTS, ANNOTATION_ADDITIONAL_SERVICES):
        if key not in overrides:
            admin.metadata.annotations.pop(key, None)
    admin.metadata.annotations.update(overrides)
    try:
        return client.update(admin).to_dict()
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.delete("/platformadmins/{namespace}/{name}", status_code=202)
def delete_platformadmin(namespace: str, name: str) -> dict:
    try:
        app.state.client.delete(PlatformAdmin, namespace, name)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"deleted": f"{namespace}/{name}"}


@app.get("/platformadmins/{namespace}/{name}/children")
def list_children(namespace: str, name: str) -> list[dict]:
    admin = _get_admin(namespace, name)
    return [{"kind": c.KIND, **c.to_dict()} for c in app.state.client.list_owned_by(admin)]


@app.post("/platformadmins/{namespace}/{name}/reconcile")
def reconcile_now(namespace: str, name: str) -> dict:
    """Run one pass synchronously (useful when the worker pool is disabled)."""
    reconciler: Reconciler = app.state.reconciler
    try:
        result = reconciler.reconcile(Identity(namespace, name))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"{type(e).__name__}: {e}")
    return {"requeue_after": result.requeue_after}


@app.put("/workloadsets/{namespace}/{name}/status")
def report_workloadset_status(namespace: str, name: str, req: WorkloadSetStatusRequest) -> dict:
    client: ClusterClient = app.state.client
    try:
        ws = client.get(WorkloadSet, namespace, name)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    ws.status = WorkloadSetStatus(
        replicas=req.replicas,
        ready_replicas=req.ready_replicas,
        pool_replicas=dict(req.pool_replicas),
    )
    return client.update_status(ws).to_dict()


@app.get("/events")
def events(limit: int = Query(100, ge=1, le=1000), namespace: str | None = None, name: str | None = None) -> list[dict]:
    return db.latest_events(limit, namespace=namespace, name=name)


@app.get("/metrics")
def metrics() -> dict:
    out = app.state.runtime.snapshot()
    out["queue_depth"] = len(app.state.controller.queue)
    out["workers"] = app.state.controller.workers
    return out


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)

import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import par` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from par import db  # noqa: E402
from par.catalog import Catalog  # noqa: E402
from par.cluster import ClusterClient  # noqa: E402
from par.models import ObjectMeta, PlatformAdmin, PlatformAdminSpec, WorkloadSet  # noqa: E402
from par.settings import Settings  # noqa: E402


def _component(name, service=True, deployment=True, config_maps=None):
    out = {"name": name, "config_maps": config_maps or []}
    if service:
        out["service"] = {"ports": [{"port": 80}], "selector": {"app": name}}
    if deployment:
        out["deployment"] = {"containers": [{"name": name, "image": f"example/{name}:1.0"}]}
    return out


CATALOG = {
    "no_security": {
        "v1": [
            _component("core-metadata", config_maps=[{"name": "common-variables", "data": {"SECURE": "false"}}]),
            _component("core-command"),
        ],
        "v2": [
            _component("core-metadata", config_maps=[{"name": "common-variables", "data": {"SECURE": "false"}}]),
        ],
    },
    "security": {
        "v1": [
            _component("vault", config_maps=[{"name": "common-variables", "data": {"SECURE": "true"}}]),
            _component("core-metadata"),
        ],
    },
}


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test gets its own sqlite file."""
    path = tmp_path / "par.db"
    monkeypatch.setattr(db, "settings", Settings(db_path=str(path)))
    db.init_db()
    return path


@pytest.fixture
def client():
    return ClusterClient()


@pytest.fixture
def catalog():
    return Catalog.model_validate(CATALOG)


@pytest.fixture
def new_admin(client):
    def _make(name="edge", namespace="default", version="v1", pool="hangzhou", security=False, annotations=None):
        admin = PlatformAdmin(
            metadata=ObjectMeta(name=name, namespace=namespace, annotations=dict(annotations or {})),
            spec=PlatformAdminSpec(version=version, security=security, pool_name=pool),
        )
        return client.create(admin)

    return _make


@pytest.fixture
def mark_ready(client):
    """Play the workload-set controller: report every pool as fully ready."""

    def _mark(namespace="default", ready=True):
        for ws in client.list(WorkloadSet, namespace):
            n = sum(p.replicas for p in ws.spec.pools)
            ws.status.replicas = n
            ws.status.ready_replicas = n if ready else max(0, n - 1)
            ws.status.pool_replicas = {p.name: p.replicas for p in ws.spec.pools}
            client.update_status(ws)

    return _mark

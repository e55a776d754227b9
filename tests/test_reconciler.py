import pytest

from par import db
from par.catalog import Catalog
from par.errors import AggregateError, Conflict, DuplicateComponentError, NotFound, ReconcileError
from par.models import FINALIZER, ConfigObject, Exposure, Identity, PlatformAdmin, WorkloadSet
from par.reconciler import Reconciler, Result
from par.status import (
    COMPONENT_AVAILABLE,
    COMPONENT_PROVISIONING,
    COMPONENT_PROVISIONING_FAILED,
    CONFIGMAP_AVAILABLE,
    CONFIGMAP_PROVISIONING_FAILED,
    get_condition,
)

EDGE = Identity("default", "edge")


@pytest.fixture
def reconciler(client, catalog):
    return Reconciler(client, catalog, requeue_after_s=10)


def _snapshot(client):
    """(kind, name) -> (resource_version, owner uids) for every stored object."""
    out = {}
    for kind in (PlatformAdmin, ConfigObject, Exposure, WorkloadSet):
        for obj in client.list(kind):
            out[(kind.KIND, obj.metadata.name)] = (
                obj.metadata.resource_version,
                tuple(r.uid for r in obj.metadata.owner_references),
            )
    return out


def test_missing_parent_is_a_noop(reconciler):
    assert reconciler.reconcile(Identity("default", "ghost")) == Result()


def test_first_pass_creates_children_and_requeues(client, reconciler, new_admin):
    new_admin()
    result = reconciler.reconcile(EDGE)
    assert result.requeue_after == 10

    admin = client.get(PlatformAdmin, "default", "edge")
    assert FINALIZER in admin.metadata.finalizers
    assert admin.status.initialized is True
    assert admin.status.ready is False
    assert admin.status.ready_component_num == 0
    assert admin.status.unready_component_num == 2
    assert get_condition(admin.status, CONFIGMAP_AVAILABLE).status is True
    comp = get_condition(admin.status, COMPONENT_AVAILABLE)
    assert comp.status is False and comp.reason == COMPONENT_PROVISIONING

    assert [c.metadata.name for c in client.list(ConfigObject, "default")] == ["common-variables"]
    assert sorted(s.metadata.name for s in client.list(Exposure, "default")) == ["core-command", "core-metadata"]
    assert sorted(w.metadata.name for w in client.list(WorkloadSet, "default")) == ["core-command", "core-metadata"]


def test_ready_only_when_every_component_is_ready(client, reconciler, new_admin, mark_ready):
    new_admin()
    reconciler.reconcile(EDGE)

    mark_ready(ready=False)
    assert reconciler.reconcile(EDGE).requeue_after == 10
    admin = client.get(PlatformAdmin, "default", "edge")
    assert admin.status.ready is False
    assert admin.status.unready_component_num >= 1

    mark_ready(ready=True)
    assert reconciler.reconcile(EDGE) == Result()
    admin = client.get(PlatformAdmin, "default", "edge")
    assert admin.status.ready is True
    assert (admin.status.ready_component_num, admin.status.unready_component_num) == (2, 0)
    assert get_condition(admin.status, CONFIGMAP_AVAILABLE).status is True
    assert get_condition(admin.status, COMPONENT_AVAILABLE).status is True


def test_reconcile_is_idempotent(client, reconciler, new_admin, mark_ready):
    new_admin()
    reconciler.reconcile(EDGE)
    mark_ready()
    reconciler.reconcile(EDGE)

    before = _snapshot(client)
    status_before = client.get(PlatformAdmin, "default", "edge").status
    assert reconciler.reconcile(EDGE) == Result()
    assert _snapshot(client) == before
    assert client.get(PlatformAdmin, "default", "edge").status == status_before


def test_removed_component_is_collected(client, reconciler, new_admin, mark_ready):
    new_admin(version="v1")
    reconciler.reconcile(EDGE)
    mark_ready()
    reconciler.reconcile(EDGE)

    admin = client.get(PlatformAdmin, "default", "edge")
    admin.spec.version = "v2"
    client.update(admin)
    assert reconciler.reconcile(EDGE) == Result()

    for kind in (Exposure, WorkloadSet):
        with pytest.raises(NotFound):
            client.get(kind, "default", "core-command")
        client.get(kind, "default", "core-metadata")
    admin = client.get(PlatformAdmin, "default", "edge")
    assert (admin.status.ready_component_num, admin.status.unready_component_num) == (1, 0)


def test_collection_keeps_objects_with_other_owners(client, reconciler, new_admin):
    new_admin(name="edge", pool="hangzhou")
    new_admin(name="other", pool="beijing")
    reconciler.reconcile(EDGE)
    reconciler.reconcile(Identity("default", "other"))

    edge = client.get(PlatformAdmin, "default", "edge")
    edge.spec.version = "v2"
    client.update(edge)
    reconciler.reconcile(EDGE)

    svc = client.get(Exposure, "default", "core-command")
    assert edge.metadata.uid not in {r.uid for r in svc.metadata.owner_references}
    ws = client.get(WorkloadSet, "default", "core-command")
    assert edge.metadata.uid not in {r.uid for r in ws.metadata.owner_references}
    assert ws.metadata.owner_references


def test_malformed_override_fails_and_persists_status(client, reconciler, new_admin):
    new_admin(annotations={"AdditionalDeployments": "{broken"})
    with pytest.raises(ReconcileError) as exc:
        reconciler.reconcile(EDGE)
    assert "resolving components" in str(exc.value)

    admin = client.get(PlatformAdmin, "default", "edge")
    cond = get_condition(admin.status, COMPONENT_AVAILABLE)
    assert cond.status is False
    assert cond.reason == COMPONENT_PROVISIONING_FAILED
    assert "AdditionalDeployments" in cond.message
    assert admin.status.ready is False


def test_config_failure_aborts_the_pass(client, reconciler, new_admin, monkeypatch):
    new_admin()
    real_create = client.create

    def failing_create(obj):
        if isinstance(obj, ConfigObject):
            raise Conflict(obj.KIND, "default", obj.metadata.name, 1, 2)
        return real_create(obj)

    monkeypatch.setattr(client, "create", failing_create)
    with pytest.raises(ReconcileError) as exc:
        reconciler.reconcile(EDGE)
    assert isinstance(exc.value.__cause__, Conflict)

    admin = client.get(PlatformAdmin, "default", "edge")
    cond = get_condition(admin.status, CONFIGMAP_AVAILABLE)
    assert cond.status is False and cond.reason == CONFIGMAP_PROVISIONING_FAILED
    # nothing past the failing step was attempted
    assert client.list(Exposure, "default") == []


def test_status_persist_failure_is_aggregated(client, reconciler, new_admin, monkeypatch):
    new_admin(annotations={"AdditionalDeployments": "{broken"})

    def failing_status(obj):
        raise RuntimeError("status write refused")

    monkeypatch.setattr(client, "update_status", failing_status)
    with pytest.raises(AggregateError) as exc:
        reconciler.reconcile(EDGE)
    assert len(exc.value.errors) == 2
    assert "status write refused" in str(exc.value)


def test_deletion_leaves_pools_then_releases_finalizer(client, reconciler, new_admin):
    new_admin(name="edge", pool="hangzhou")
    new_admin(name="other", pool="beijing")
    reconciler.reconcile(EDGE)
    reconciler.reconcile(Identity("default", "other"))
    reconciler.reconcile(EDGE)

    client.delete(PlatformAdmin, "default", "edge")
    assert reconciler.reconcile(EDGE) == Result()

    with pytest.raises(NotFound):
        client.get(PlatformAdmin, "default", "edge")
    for name in ("core-metadata", "core-command"):
        ws = client.get(WorkloadSet, "default", name)
        assert [p.name for p in ws.spec.pools] == ["beijing"]
    # config objects and exposures co-owned by "other" survive the cascade
    assert client.get(ConfigObject, "default", "common-variables").metadata.owner_references
    assert any("released finalizer" in e["message"] for e in db.latest_events())


def test_deletion_cascades_children_of_sole_owner(client, reconciler, new_admin):
    new_admin()
    reconciler.reconcile(EDGE)
    client.delete(PlatformAdmin, "default", "edge")
    reconciler.reconcile(EDGE)

    assert client.list(ConfigObject, "default") == []
    assert client.list(Exposure, "default") == []
    assert client.list(WorkloadSet, "default") == []


def test_finalizer_kept_when_pool_removal_fails(client, reconciler, new_admin, monkeypatch):
    new_admin()
    reconciler.reconcile(EDGE)
    client.delete(PlatformAdmin, "default", "edge")

    def failing_patch(obj, original):
        raise Conflict(obj.KIND, "default", obj.metadata.name, 1, 2)

    monkeypatch.setattr(client, "patch", failing_patch)
    with pytest.raises(Conflict):
        reconciler.reconcile(EDGE)

    admin = client.get(PlatformAdmin, "default", "edge")
    assert FINALIZER in admin.metadata.finalizers
    assert admin.metadata.deletion_timestamp is not None


def test_deletion_completes_despite_component_name_collision(client, reconciler, new_admin):
    new_admin(name="edge", pool="hangzhou")
    new_admin(name="other", pool="beijing")
    reconciler.reconcile(EDGE)
    reconciler.reconcile(Identity("default", "other"))

    # an override that collides with the catalog appears after the fact
    edge = client.get(PlatformAdmin, "default", "edge")
    edge.metadata.annotations["AdditionalDeployments"] = '[{"metadata": {"name": "core-command"}}]'
    client.update(edge)
    with pytest.raises(ReconcileError):
        reconciler.reconcile(EDGE)

    client.delete(PlatformAdmin, "default", "edge")
    assert reconciler.reconcile(EDGE) == Result()

    with pytest.raises(NotFound):
        client.get(PlatformAdmin, "default", "edge")
    for name in ("core-metadata", "core-command"):
        assert [p.name for p in client.get(WorkloadSet, "default", name).spec.pools] == ["beijing"]


def _catalog_with_shared_config(first, second):
    def component(name, data):
        return {
            "name": name,
            "config_maps": [{"name": "common", "data": data}],
            "service": {"ports": [{"port": 80}]},
        }

    return Catalog.model_validate({"no_security": {"v1": [component("a", first), component("b", second)]}})


def test_shared_config_object_with_same_data_is_written_once(client, new_admin):
    new_admin()
    reconciler = Reconciler(client, _catalog_with_shared_config({"X": "1"}, {"X": "1"}), requeue_after_s=10)

    reconciler.reconcile(EDGE)
    version = client.get(ConfigObject, "default", "common").metadata.resource_version
    reconciler.reconcile(EDGE)
    assert client.get(ConfigObject, "default", "common").metadata.resource_version == version


def test_conflicting_config_object_definitions_fail_the_pass(client, new_admin):
    new_admin()
    reconciler = Reconciler(client, _catalog_with_shared_config({"X": "1"}, {"X": "2"}), requeue_after_s=10)

    with pytest.raises(ReconcileError) as exc:
        reconciler.reconcile(EDGE)
    assert isinstance(exc.value.__cause__, DuplicateComponentError)
    assert client.list(ConfigObject, "default") == []
    cond = get_condition(client.get(PlatformAdmin, "default", "edge").status, COMPONENT_AVAILABLE)
    assert cond.status is False and cond.reason == COMPONENT_PROVISIONING_FAILED


def test_dropping_a_deployment_collects_only_the_workload_set(client, reconciler, new_admin):
    both = '[{"metadata": {"name": "extra"}, "spec": {"k": "v"}}]'
    new_admin(annotations={"AdditionalDeployments": both, "AdditionalServices": both})
    reconciler.reconcile(EDGE)
    client.get(WorkloadSet, "default", "extra")

    admin = client.get(PlatformAdmin, "default", "edge")
    del admin.metadata.annotations["AdditionalDeployments"]
    client.update(admin)
    reconciler.reconcile(EDGE)

    with pytest.raises(NotFound):
        client.get(WorkloadSet, "default", "extra")
    client.get(Exposure, "default", "extra")

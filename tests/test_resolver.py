import json

import pytest

from par.catalog import Catalog, load_catalog
from par.errors import DecodeError, DuplicateComponentError
from par.models import ObjectMeta, PlatformAdmin, PlatformAdminSpec
from par.resolver import annotation_to_components, component_names, desired_components


def _admin(version="v1", security=False, annotations=None):
    return PlatformAdmin(
        metadata=ObjectMeta(name="edge", namespace="default", annotations=annotations or {}),
        spec=PlatformAdminSpec(version=version, security=security, pool_name="hangzhou"),
    )


def _templates(*names, spec=None):
    return json.dumps([{"metadata": {"name": n}, "spec": spec or {"k": n}} for n in names])


def test_security_catalog_selection(catalog):
    components = desired_components(_admin(security=True), catalog)
    assert [c.name for c in components] == ["vault", "core-metadata"]
    assert components[0].config_objects[0].data == {"SECURE": "true"}


def test_no_security_catalog_selection(catalog):
    components = desired_components(_admin(security=False), catalog)
    assert [c.name for c in components] == ["core-metadata", "core-command"]


def test_unknown_version_yields_empty_list(catalog):
    assert desired_components(_admin(version="does-not-exist"), catalog) == []
    assert desired_components(_admin(version="v2", security=True), catalog) == []


def test_catalog_components_are_fresh_copies(catalog):
    first = desired_components(_admin(), catalog)
    first[0].service["mutated"] = True
    second = desired_components(_admin(), catalog)
    assert "mutated" not in second[0].service


def test_matching_service_attaches_to_deployment():
    components = annotation_to_components(
        {
            "AdditionalDeployments": _templates("extra-svc"),
            "AdditionalServices": _templates("extra-svc"),
        }
    )
    assert len(components) == 1
    assert components[0].name == "extra-svc"
    assert components[0].deployment == {"k": "extra-svc"}
    assert components[0].service == {"k": "extra-svc"}


def test_unmatched_services_become_components_in_order():
    components = annotation_to_components(
        {
            "AdditionalDeployments": _templates("worker"),
            "AdditionalServices": _templates("svc-b", "worker", "svc-a"),
        }
    )
    assert [c.name for c in components] == ["worker", "svc-b", "svc-a"]
    assert components[1].deployment is None
    assert components[1].service == {"k": "svc-b"}


def test_absent_annotations_yield_nothing():
    assert annotation_to_components({}) == []
    assert annotation_to_components({"AdditionalDeployments": "[]"}) == []


def test_catalog_then_annotation_order(catalog):
    admin = _admin(annotations={"AdditionalDeployments": _templates("extra")})
    assert [c.name for c in desired_components(admin, catalog)] == ["core-metadata", "core-command", "extra"]


@pytest.mark.parametrize(
    "annotations",
    [
        {"AdditionalDeployments": "{not json"},
        {"AdditionalServices": '[{"spec": {}}]'},
        {"AdditionalDeployments": '{"metadata": {"name": "x"}}'},
    ],
)
def test_malformed_annotations_raise(annotations):
    with pytest.raises(DecodeError):
        annotation_to_components(annotations)


def test_name_collision_with_catalog_is_rejected(catalog):
    admin = _admin(annotations={"AdditionalDeployments": _templates("core-command")})
    with pytest.raises(DuplicateComponentError):
        desired_components(admin, catalog)


def test_example_catalog_loads():
    import os

    path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "examples", "catalog.yaml")
    catalog = load_catalog(path)
    assert "minnesota" in catalog.versions(security=True)
    names = [c.name for c in catalog.components(False, "minnesota")]
    assert "edgex-core-metadata" in names


def test_shared_config_object_must_agree_on_data():
    same = Catalog.model_validate(
        {
            "no_security": {
                "v1": [
                    {"name": "a", "config_maps": [{"name": "common", "data": {"X": "1"}}]},
                    {"name": "b", "config_maps": [{"name": "common", "data": {"X": "1"}}]},
                ]
            }
        }
    )
    assert [c.name for c in desired_components(_admin(), same)] == ["a", "b"]

    clashing = Catalog.model_validate(
        {
            "no_security": {
                "v1": [
                    {"name": "a", "config_maps": [{"name": "common", "data": {"X": "1"}}]},
                    {"name": "b", "config_maps": [{"name": "common", "data": {"X": "2"}}]},
                ]
            }
        }
    )
    with pytest.raises(DuplicateComponentError, match="common"):
        desired_components(_admin(), clashing)


def test_component_names_tolerate_collisions(catalog):
    admin = _admin(annotations={"AdditionalDeployments": _templates("core-command", "extra")})
    assert component_names(admin, catalog) == {"core-metadata", "core-command", "extra"}

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .catalog import Catalog
from .errors import DecodeError, DuplicateComponentError
from .models import (
    ANNOTATION_ADDITIONAL_DEPLOYMENTS,
    ANNOTATION_ADDITIONAL_SERVICES,
    Component,
    PlatformAdmin,
)


class TemplateMeta(BaseModel):
    name: str


class DeploymentTemplate(BaseModel):
    metadata: TemplateMeta
    spec: dict[str, Any] = Field(default_factory=dict)


class ServiceTemplate(BaseModel):
    metadata: TemplateMeta
    spec: dict[str, Any] = Field(default_factory=dict)


_deployments = TypeAdapter(list[DeploymentTemplate])
_services = TypeAdapter(list[ServiceTemplate])


def _decode(annotations: dict[str, str], key: str, adapter: TypeAdapter) -> list[Any]:
    raw = annotations.get(key)
    if raw is None:
        return []
    try:
        return adapter.validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"invalid {key} annotation: {e}") from e


def annotation_to_components(annotations: dict[str, str]) -> list[Component]:
    """Turn the AdditionalDeployments/AdditionalServices annotations into components.

    Every deployment becomes a component; a service with the same name is
    attached to it. Services without a matching deployment become
    service-only components, in annotation order.
    """
    deployments = _decode(annotations, ANNOTATION_ADDITIONAL_DEPLOYMENTS, _deployments)
    services = _decode(annotations, ANNOTATION_ADDITIONAL_SERVICES, _services)
    if not deployments and not services:
        return []

    by_name: dict[str, ServiceTemplate] = {}
    for s in services:
        by_name[s.metadata.name] = s

    components: list[Component] = []
    used: set[str] = set()
    for d in deployments:
        component = Component(name=d.metadata.name, deployment=dict(d.spec))
        svc = by_name.get(component.name)
        if svc is not None:
            component.service = dict(svc.spec)
            used.add(component.name)
        components.append(component)

    for s in services:
        name = s.metadata.name
        if name in used:
            continue
        used.add(name)
        components.append(Component(name=name, service=dict(by_name[name].spec)))

    return components


def _resolve(admin: PlatformAdmin, catalog: Catalog) -> list[Component]:
    components = catalog.components(admin.spec.security, admin.spec.version)
    components.extend(annotation_to_components(admin.metadata.annotations))
    return components


def desired_components(admin: PlatformAdmin, catalog: Catalog) -> list[Component]:
    """Catalog components for (security, version) followed by the override components.

    Component names must be unique, and a config object declared by several
    components must carry the same data everywhere.
    """
    components = _resolve(admin, catalog)

    seen: set[str] = set()
    config_data: dict[str, dict[str, str]] = {}
    for c in components:
        if c.name in seen:
            raise DuplicateComponentError(
                f"component {c.name!r} is declared more than once for version {admin.spec.version!r}"
            )
        seen.add(c.name)
        for cm in c.config_objects:
            name = cm.metadata.name
            if name in config_data and config_data[name] != cm.data:
                raise DuplicateComponentError(
                    f"config object {name!r} is declared with different data for version {admin.spec.version!r}"
                )
            config_data[name] = cm.data
    return components


def component_names(admin: PlatformAdmin, catalog: Catalog) -> set[str]:
    """Names of every catalog and override component, duplicates allowed.

    Used on deletion, where a later collision must not block cleanup.
    """
    return {c.name for c in _resolve(admin, catalog)}

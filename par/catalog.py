from __future__ import annotations

import copy
import logging
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .models import Component, ConfigObject, ObjectMeta
from .settings import settings

logger = logging.getLogger(__name__)


class ConfigMapTemplate(BaseModel):
    name: str
    data: dict[str, str] = Field(default_factory=dict)


class ComponentTemplate(BaseModel):
    name: str
    config_maps: list[ConfigMapTemplate] = Field(default_factory=list)
    service: dict[str, Any] | None = Field(None, description="Exposure spec (ports, selector, ...)")
    deployment: dict[str, Any] | None = Field(None, description="Workload template spec")

    def to_component(self) -> Component:
        return Component(
            name=self.name,
            config_objects=[
                ConfigObject(metadata=ObjectMeta(name=cm.name), data=dict(cm.data)) for cm in self.config_maps
            ],
            service=copy.deepcopy(self.service),
            deployment=copy.deepcopy(self.deployment),
        )


class Catalog(BaseModel):
    """Version-keyed component lists, one table per security mode."""

    security: dict[str, list[ComponentTemplate]] = Field(default_factory=dict)
    no_security: dict[str, list[ComponentTemplate]] = Field(default_factory=dict)

    def _table(self, security: bool) -> dict[str, list[ComponentTemplate]]:
        return self.security if security else self.no_security

    def components(self, security: bool, version: str) -> list[Component]:
        # Unknown versions resolve to nothing rather than an error.
        return [t.to_component() for t in self._table(security).get(version, [])]

    def versions(self, security: bool) -> list[str]:
        return sorted(self._table(security))


def load_catalog(path: str | None = None) -> Catalog:
    """Load the catalog from a YAML (or JSON) file."""
    path = path or settings.catalog_path
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    catalog = Catalog.model_validate(raw)
    logger.info(
        "loaded catalog %s: security versions %s, no-security versions %s",
        path,
        catalog.versions(True),
        catalog.versions(False),
    )
    return catalog

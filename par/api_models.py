from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .models import ANNOTATION_ADDITIONAL_DEPLOYMENTS, ANNOTATION_ADDITIONAL_SERVICES

NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"


class TemplateRequest(BaseModel):
    name: str = Field(..., pattern=NAME_PATTERN)
    spec: dict[str, Any] = Field(default_factory=dict)


class ApplyPlatformAdminRequest(BaseModel):
    namespace: str = Field("default", pattern=NAME_PATTERN)
    name: str = Field(..., pattern=NAME_PATTERN)
    version: str = Field(..., description="Catalog version, e.g. minnesota")
    security: bool = Field(False, description="Use the security-enabled catalog")
    pool_name: str = Field(..., min_length=1, description="Node pool this instance serves")
    additional_deployments: list[TemplateRequest] | None = None
    additional_services: list[TemplateRequest] | None = None
    annotations: dict[str, str] = Field(default_factory=dict)

    def override_annotations(self) -> dict[str, str]:
        """Encode the additional templates as override annotations."""
        out = dict(self.annotations)
        if self.additional_deployments is not None:
            out[ANNOTATION_ADDITIONAL_DEPLOYMENTS] = _encode_templates(self.additional_deployments)
        if self.additional_services is not None:
            out[ANNOTATION_ADDITIONAL_SERVICES] = _encode_templates(self.additional_services)
        return out


def _encode_templates(templates: list[TemplateRequest]) -> str:
    return json.dumps([{"metadata": {"name": t.name}, "spec": t.spec} for t in templates])


class WorkloadSetStatusRequest(BaseModel):
    replicas: int = Field(..., ge=0)
    ready_replicas: int = Field(..., ge=0)
    pool_replicas: dict[str, int] = Field(default_factory=dict)

    @field_validator("pool_replicas")
    @classmethod
    def _non_negative(cls, v: dict[str, int]) -> dict[str, int]:
        for pool, n in v.items():
            if n < 0:
                raise ValueError(f"pool {pool}: replicas must be >= 0")
        return v

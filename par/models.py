from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

# Label put on every generated child; its value names the child kind so GC can
# list one kind at a time without scanning the namespace.
LABEL_GENERATE = "iot.openyurt.io/generate"
LABEL_CONFIGMAP = "Configmap"
LABEL_SERVICE = "Service"
LABEL_DEPLOYMENT = "Deployment"

FINALIZER = "iot.openyurt.io/platformadmin"

ANNOTATION_TOPOLOGY_KEY = "openyurt.io/topologyKeys"
ANNOTATION_TOPOLOGY_NODEPOOL = "openyurt.io/nodepool"

# Override annotations on the parent.
ANNOTATION_ADDITIONAL_DEPLOYMENTS = "AdditionalDeployments"
ANNOTATION_ADDITIONAL_SERVICES = "AdditionalServices"

LABEL_CURRENT_NODEPOOL = "apps.openyurt.io/nodepool"


CONTROLLER_NAME = "PlatformAdmin"


def fmt(message: str, *args: Any) -> str:
    """Prefix a log/event message with the controller name."""
    return f"{CONTROLLER_NAME}: {message % args if args else message}"


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Identity:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, key: str) -> "Identity":
        namespace, _, name = key.partition("/")
        if not name:
            raise ValueError(f"expected <namespace>/<name>, got {key!r}")
        return cls(namespace=namespace, name=name)


@dataclass
class OwnerReference:
    kind: str
    name: str
    uid: str
    controller: bool = False


@dataclass
class ObjectMeta:
    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = None
    created_at: str | None = None


@dataclass
class Resource:
    metadata: ObjectMeta

    KIND = ""

    @property
    def identity(self) -> Identity:
        return Identity(self.metadata.namespace, self.metadata.name)

    def deepcopy(self):
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- children ---


@dataclass
class ConfigObject(Resource):
    data: dict[str, str] = field(default_factory=dict)

    KIND = "ConfigMap"


@dataclass
class Exposure(Resource):
    spec: dict[str, Any] = field(default_factory=dict)

    KIND = "Service"


@dataclass
class NodeSelectorRequirement:
    key: str
    operator: str
    values: list[str] = field(default_factory=list)


@dataclass
class Pool:
    name: str
    replicas: int = 1
    node_selector: list[NodeSelectorRequirement] = field(default_factory=list)


@dataclass
class WorkloadSetSpec:
    selector: dict[str, str] = field(default_factory=dict)
    # {"labels": {...}, "spec": <deployment spec>}
    template: dict[str, Any] = field(default_factory=dict)
    pools: list[Pool] = field(default_factory=list)


@dataclass
class WorkloadSetStatus:
    replicas: int = 0
    ready_replicas: int = 0
    pool_replicas: dict[str, int] = field(default_factory=dict)


@dataclass
class WorkloadSet(Resource):
    spec: WorkloadSetSpec = field(default_factory=WorkloadSetSpec)
    status: WorkloadSetStatus = field(default_factory=WorkloadSetStatus)

    KIND = "WorkloadSet"

    def pool(self, name: str) -> Pool | None:
        for p in self.spec.pools:
            if p.name == name:
                return p
        return None


# --- parent ---


@dataclass
class Condition:
    type: str
    status: bool
    reason: str = ""
    message: str = ""
    last_transition_time: str = field(default_factory=utc_now)


@dataclass
class PlatformAdminSpec:
    version: str = ""
    security: bool = False
    pool_name: str = ""


@dataclass
class PlatformAdminStatus:
    initialized: bool = False
    ready: bool = False
    ready_component_num: int = 0
    unready_component_num: int = 0
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class PlatformAdmin(Resource):
    spec: PlatformAdminSpec = field(default_factory=PlatformAdminSpec)
    status: PlatformAdminStatus = field(default_factory=PlatformAdminStatus)

    KIND = "PlatformAdmin"


# --- desired state ---


@dataclass
class Component:
    """One resolved unit of desired children. Recomputed every pass."""

    name: str
    config_objects: list[ConfigObject] = field(default_factory=list)
    service: dict[str, Any] | None = None
    deployment: dict[str, Any] | None = None


KINDS: dict[str, type[Resource]] = {
    cls.KIND: cls for cls in (PlatformAdmin, ConfigObject, Exposure, WorkloadSet)
}

_adapters: dict[type, TypeAdapter] = {}


def from_dict(cls: type[Resource], data: dict[str, Any]) -> Resource:
    adapter = _adapters.get(cls)
    if adapter is None:
        adapter = _adapters[cls] = TypeAdapter(cls)
    return adapter.validate_python(data)


# --- metadata helpers ---


def owner_reference(owner: Resource, controller: bool = False) -> OwnerReference:
    return OwnerReference(
        kind=owner.KIND,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=controller,
    )


def set_owner_reference(obj: Resource, owner: Resource, controller: bool = False) -> bool:
    """Add owner to obj's owner list if absent. Returns True when obj changed."""
    for ref in obj.metadata.owner_references:
        if ref.uid == owner.metadata.uid:
            return False
    if controller and any(r.controller for r in obj.metadata.owner_references):
        raise ValueError(f"{obj.KIND} {obj.identity} already has a controller owner")
    obj.metadata.owner_references.append(owner_reference(owner, controller=controller))
    return True


def remove_owner_reference(obj: Resource, owner_uid: str) -> bool:
    refs = obj.metadata.owner_references
    kept = [r for r in refs if r.uid != owner_uid]
    if len(kept) == len(refs):
        return False
    obj.metadata.owner_references = kept
    return True


def is_owned_by(obj: Resource, owner_uid: str) -> bool:
    return any(r.uid == owner_uid for r in obj.metadata.owner_references)


def add_finalizer(obj: Resource, finalizer: str) -> bool:
    if finalizer in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: Resource, finalizer: str) -> bool:
    if finalizer not in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return True

from __future__ import annotations

import copy
import logging
from threading import Lock
from typing import Any, Callable

from . import db
from .db import ObjectRow
from .errors import Conflict, NotFound
from .models import KINDS, Resource, from_dict, remove_owner_reference, utc_now

logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

WatchCallback = Callable[[str, Resource], None]

# Server-managed metadata; never part of a stored body or a patch.
_SERVER_FIELDS = ("uid", "resource_version", "created_at", "name", "namespace")


def create_merge_patch(original: dict[str, Any], modified: dict[str, Any]) -> dict[str, Any]:
    """RFC 7386 merge patch turning `original` into `modified`."""
    patch: dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None
    for key, value in modified.items():
        if key in original and original[key] == value:
            continue
        old = original.get(key)
        if isinstance(old, dict) and isinstance(value, dict):
            sub = create_merge_patch(old, value)
            if sub:
                patch[key] = sub
        else:
            patch[key] = copy.deepcopy(value)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


def _split(obj: Resource) -> tuple[dict[str, Any], dict[str, str], list[dict[str, Any]]]:
    """Split an object into (body, labels, owners) as stored by db."""
    body = obj.to_dict()
    meta = body["metadata"]
    labels = meta.pop("labels")
    owners = meta.pop("owner_references")
    for k in _SERVER_FIELDS:
        meta.pop(k, None)
    return body, labels, owners


def _to_resource(row: ObjectRow) -> Resource:
    body = copy.deepcopy(row.body)
    meta = body.setdefault("metadata", {})
    meta.update(
        name=row.name,
        namespace=row.namespace,
        uid=row.uid,
        resource_version=row.resource_version,
        created_at=row.created_at,
        labels=dict(row.labels),
        owner_references=list(row.owners),
    )
    return from_dict(KINDS[row.kind], body)


class ClusterClient:
    """Typed access to the object store with cluster API semantics.

    - update/patch are conditional on metadata.resource_version
    - update never touches status, update_status touches nothing else
    - delete honours finalizers and cascades through owner references
    - watchers are called after every effective write
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._watchers: list[WatchCallback] = []

    def watch(self, callback: WatchCallback) -> None:
        with self._lock:
            self._watchers.append(callback)

    def _notify(self, event: str, obj: Resource) -> None:
        with self._lock:
            watchers = list(self._watchers)
        for cb in watchers:
            try:
                cb(event, obj)
            except Exception:
                logger.exception("watch callback failed for %s %s", obj.KIND, obj.identity)

    # --- reads ---

    def get(self, cls: type[Resource], namespace: str, name: str) -> Resource:
        row = db.get_object(cls.KIND, namespace, name)
        if row is None:
            raise NotFound(cls.KIND, namespace, name)
        return _to_resource(row)

    def list(self, cls: type[Resource], namespace: str | None = None, labels: dict[str, str] | None = None) -> list[Resource]:
        return [_to_resource(r) for r in db.list_objects(cls.KIND, namespace, labels)]

    def list_owned_by(self, owner: Resource) -> list[Resource]:
        return [_to_resource(r) for r in db.list_owned_by(owner.metadata.uid)]

    # --- writes ---

    def create(self, obj: Resource) -> Resource:
        if not obj.metadata.name or not obj.metadata.namespace:
            raise ValueError(f"{obj.KIND} needs a name and a namespace")
        body, labels, owners = _split(obj)
        body["metadata"]["deletion_timestamp"] = None
        created = _to_resource(db.insert_object(obj.KIND, obj.metadata.namespace, obj.metadata.name, body, labels, owners))
        self._notify(ADDED, created)
        return created

    def update(self, obj: Resource) -> Resource:
        current = db.get_object(obj.KIND, obj.metadata.namespace, obj.metadata.name)
        if current is None:
            raise NotFound(obj.KIND, obj.metadata.namespace, obj.metadata.name)
        body, labels, owners = _split(obj)
        if "status" in current.body:
            body["status"] = current.body["status"]
        # deletion is requested through delete() only
        body["metadata"]["deletion_timestamp"] = current.body["metadata"].get("deletion_timestamp")
        row, changed = db.update_object(
            obj.KIND,
            obj.metadata.namespace,
            obj.metadata.name,
            body,
            labels,
            owners,
            expected_version=obj.metadata.resource_version,
        )
        updated = _to_resource(row)
        if updated.metadata.deletion_timestamp and not updated.metadata.finalizers:
            self._remove(updated)
            return updated
        if changed:
            self._notify(MODIFIED, updated)
        return updated

    def update_status(self, obj: Resource) -> Resource:
        current = db.get_object(obj.KIND, obj.metadata.namespace, obj.metadata.name)
        if current is None:
            raise NotFound(obj.KIND, obj.metadata.namespace, obj.metadata.name)
        body = copy.deepcopy(current.body)
        body["status"] = obj.to_dict()["status"]
        row, changed = db.update_object(
            obj.KIND,
            obj.metadata.namespace,
            obj.metadata.name,
            body,
            current.labels,
            current.owners,
            expected_version=current.resource_version,
        )
        updated = _to_resource(row)
        if changed:
            self._notify(MODIFIED, updated)
        return updated

    def patch(self, obj: Resource, original: Resource) -> Resource:
        """Merge-patch the difference between `original` and `obj`.

        The patch carries original's resource_version, so a concurrent
        writer in between raises Conflict.
        """
        before, after = original.to_dict(), obj.to_dict()
        for doc in (before, after):
            doc.pop("status", None)
            for k in _SERVER_FIELDS:
                doc["metadata"].pop(k, None)
        patch = create_merge_patch(before, after)
        if not patch:
            return obj

        current = self.get(type(obj), obj.metadata.namespace, obj.metadata.name)
        if current.metadata.resource_version != original.metadata.resource_version:
            raise Conflict(
                obj.KIND,
                obj.metadata.namespace,
                obj.metadata.name,
                original.metadata.resource_version,
                current.metadata.resource_version,
            )
        merged = apply_merge_patch(current.to_dict(), patch)
        merged["metadata"].update(
            uid=current.metadata.uid,
            resource_version=current.metadata.resource_version,
            name=current.metadata.name,
            namespace=current.metadata.namespace,
        )
        return self.update(from_dict(type(obj), merged))

    def delete(self, cls: type[Resource], namespace: str, name: str) -> None:
        obj = self.get(cls, namespace, name)
        if obj.metadata.finalizers:
            if obj.metadata.deletion_timestamp:
                return
            current = db.get_object(cls.KIND, namespace, name)
            body = copy.deepcopy(current.body)
            body["metadata"]["deletion_timestamp"] = utc_now()
            row, _ = db.update_object(
                cls.KIND, namespace, name, body, current.labels, current.owners, expected_version=current.resource_version
            )
            self._notify(MODIFIED, _to_resource(row))
            return
        self._remove(obj)

    def _remove(self, obj: Resource) -> None:
        if not db.delete_object(obj.KIND, obj.metadata.namespace, obj.metadata.name):
            return
        logger.debug("deleted %s %s", obj.KIND, obj.identity)
        self._notify(DELETED, obj)

        # Cascade: drop the owner from dependents, delete dependents left unowned.
        for row in db.list_owned_by(obj.metadata.uid):
            for _ in range(3):
                try:
                    dependent = self.get(KINDS[row.kind], row.namespace, row.name)
                    remove_owner_reference(dependent, obj.metadata.uid)
                    if dependent.metadata.owner_references:
                        self.update(dependent)
                    else:
                        self.delete(type(dependent), row.namespace, row.name)
                    break
                except Conflict:
                    continue
                except NotFound:
                    break
            else:
                logger.warning("cascade from %s %s left %s %s/%s behind", obj.KIND, obj.identity, row.kind, row.namespace, row.name)

from __future__ import annotations

import json
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import AlreadyExists, Conflict, NotFound
from .settings import settings


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount created before the
    file existed), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "par.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS objects (
              uid TEXT PRIMARY KEY,
              kind TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              resource_version INTEGER NOT NULL,
              body TEXT NOT NULL, -- JSON without labels/owner references
              created_at TEXT NOT NULL,
              UNIQUE(kind, namespace, name)
            );

            -- secondary index used for label-scoped scans
            CREATE TABLE IF NOT EXISTS object_labels (
              uid TEXT NOT NULL,
              key TEXT NOT NULL,
              value TEXT NOT NULL,
              PRIMARY KEY(uid, key),
              FOREIGN KEY(uid) REFERENCES objects(uid) ON DELETE CASCADE
            );

            -- ownership relation used for cascades
            CREATE TABLE IF NOT EXISTS owner_refs (
              uid TEXT NOT NULL,
              position INTEGER NOT NULL,
              owner_kind TEXT NOT NULL,
              owner_name TEXT NOT NULL,
              owner_uid TEXT NOT NULL,
              controller INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY(uid, owner_uid),
              FOREIGN KEY(uid) REFERENCES objects(uid) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              namespace TEXT,
              name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_labels_kv ON object_labels(key, value);
            CREATE INDEX IF NOT EXISTS idx_owner_refs_owner ON owner_refs(owner_uid);
            """
        )


def log_event(level: str, message: str, namespace: str | None = None, name: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, name, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, name, message),
        )


def latest_events(limit: int = 100, namespace: str | None = None, name: str | None = None) -> list[dict[str, Any]]:
    where: list[str] = []
    params: list[Any] = []
    if namespace:
        where.append("namespace=?")
        params.append(namespace)
    if name:
        where.append("name=?")
        params.append(name)
    sql = "SELECT * FROM events"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY id DESC LIMIT ?"
    with connect() as conn:
        rows = conn.execute(sql, (*params, limit)).fetchall()
        return [dict(r) for r in rows]


@dataclass(frozen=True)
class ObjectRow:
    uid: str
    kind: str
    namespace: str
    name: str
    resource_version: int
    body: dict[str, Any]
    created_at: str
    labels: dict[str, str] = field(default_factory=dict)
    owners: list[dict[str, Any]] = field(default_factory=list)


def _dumps(body: dict[str, Any]) -> str:
    return json.dumps(body, sort_keys=True, separators=(",", ":"))


def _hydrate(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[ObjectRow]:
    out: list[ObjectRow] = []
    for r in rows:
        labels = {
            lr["key"]: lr["value"]
            for lr in conn.execute("SELECT key, value FROM object_labels WHERE uid=? ORDER BY key", (r["uid"],))
        }
        owners = [
            {
                "kind": o["owner_kind"],
                "name": o["owner_name"],
                "uid": o["owner_uid"],
                "controller": bool(o["controller"]),
            }
            for o in conn.execute("SELECT * FROM owner_refs WHERE uid=? ORDER BY position", (r["uid"],))
        ]
        out.append(
            ObjectRow(
                uid=r["uid"],
                kind=r["kind"],
                namespace=r["namespace"],
                name=r["name"],
                resource_version=r["resource_version"],
                body=json.loads(r["body"]),
                created_at=r["created_at"],
                labels=labels,
                owners=owners,
            )
        )
    return out


def _write_indexes(conn: sqlite3.Connection, uid: str, labels: dict[str, str], owners: list[dict[str, Any]]) -> None:
    conn.execute("DELETE FROM object_labels WHERE uid=?", (uid,))
    conn.execute("DELETE FROM owner_refs WHERE uid=?", (uid,))
    conn.executemany(
        "INSERT INTO object_labels (uid, key, value) VALUES (?, ?, ?)",
        [(uid, k, v) for k, v in labels.items()],
    )
    conn.executemany(
        """
        INSERT INTO owner_refs (uid, position, owner_kind, owner_name, owner_uid, controller)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [(uid, i, o["kind"], o["name"], o["uid"], int(bool(o.get("controller")))) for i, o in enumerate(owners)],
    )


def get_object(kind: str, namespace: str, name: str) -> ObjectRow | None:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?",
            (kind, namespace, name),
        ).fetchone()
        if not row:
            return None
        return _hydrate(conn, [row])[0]


def list_objects(kind: str | None = None, namespace: str | None = None, labels: dict[str, str] | None = None) -> list[ObjectRow]:
    where: list[str] = []
    params: list[Any] = []
    if kind:
        where.append("o.kind=?")
        params.append(kind)
    if namespace:
        where.append("o.namespace=?")
        params.append(namespace)
    for k, v in (labels or {}).items():
        where.append("o.uid IN (SELECT uid FROM object_labels WHERE key=? AND value=?)")
        params.extend([k, v])
    sql = "SELECT o.* FROM objects o"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY o.kind, o.namespace, o.name"
    with connect() as conn:
        return _hydrate(conn, conn.execute(sql, params).fetchall())


def list_owned_by(owner_uid: str) -> list[ObjectRow]:
    with connect() as conn:
        rows = conn.execute(
            """
            SELECT o.* FROM objects o
            JOIN owner_refs r ON r.uid = o.uid
            WHERE r.owner_uid=?
            ORDER BY o.kind, o.namespace, o.name
            """,
            (owner_uid,),
        ).fetchall()
        return _hydrate(conn, rows)


def insert_object(
    kind: str,
    namespace: str,
    name: str,
    body: dict[str, Any],
    labels: dict[str, str],
    owners: list[dict[str, Any]],
) -> ObjectRow:
    uid = str(uuid.uuid4())
    with connect() as conn:
        try:
            conn.execute(
                """
                INSERT INTO objects (uid, kind, namespace, name, resource_version, body, created_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                """,
                (uid, kind, namespace, name, _dumps(body), utc_now()),
            )
        except sqlite3.IntegrityError:
            raise AlreadyExists(kind, namespace, name) from None
        _write_indexes(conn, uid, labels, owners)
        row = conn.execute("SELECT * FROM objects WHERE uid=?", (uid,)).fetchone()
        return _hydrate(conn, [row])[0]


def update_object(
    kind: str,
    namespace: str,
    name: str,
    body: dict[str, Any],
    labels: dict[str, str],
    owners: list[dict[str, Any]],
    expected_version: int | None = None,
) -> tuple[ObjectRow, bool]:
    """Conditionally replace an object.

    Returns (row, changed). Writing identical content is a no-op and does not
    bump resource_version. With expected_version=None the write is
    conditional on the version read here.
    """
    current = get_object(kind, namespace, name)
    if current is None:
        raise NotFound(kind, namespace, name)
    if expected_version is not None and expected_version != current.resource_version:
        raise Conflict(kind, namespace, name, expected_version, current.resource_version)
    if current.body == body and current.labels == labels and current.owners == owners:
        return current, False

    with connect() as conn:
        cur = conn.execute(
            """
            UPDATE objects SET body=?, resource_version=resource_version+1
            WHERE uid=? AND resource_version=?
            """,
            (_dumps(body), current.uid, current.resource_version),
        )
        if cur.rowcount == 0:
            row = conn.execute("SELECT resource_version FROM objects WHERE uid=?", (current.uid,)).fetchone()
            if row is None:
                raise NotFound(kind, namespace, name)
            raise Conflict(kind, namespace, name, current.resource_version, row["resource_version"])
        _write_indexes(conn, current.uid, labels, owners)
        row = conn.execute("SELECT * FROM objects WHERE uid=?", (current.uid,)).fetchone()
        return _hydrate(conn, [row])[0], True


def delete_object(kind: str, namespace: str, name: str) -> bool:
    with connect() as conn:
        cur = conn.execute(
            "DELETE FROM objects WHERE kind=? AND namespace=? AND name=?",
            (kind, namespace, name),
        )
        return cur.rowcount > 0

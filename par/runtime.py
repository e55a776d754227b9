from __future__ import annotations

from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any

from .models import utc_now


@dataclass
class LastResult:
    key: str
    outcome: str  # success|requeue|error
    message: str = ""
    at: str = field(default_factory=utc_now)


class RuntimeState:
    """In-memory counters for the control loop."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.outcomes: dict[str, int] = {"success": 0, "requeue": 0, "error": 0}
        self.gc_failures: dict[str, int] = {}  # child kind -> failed collections
        self.last_results: dict[str, LastResult] = {}  # parent key -> last outcome

    def record_result(self, key: str, outcome: str, message: str = "") -> None:
        with self.lock:
            self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
            self.last_results[key] = LastResult(key=key, outcome=outcome, message=message)

    def record_gc_failure(self, kind: str) -> int:
        with self.lock:
            self.gc_failures[kind] = self.gc_failures.get(kind, 0) + 1
            return self.gc_failures[kind]

    def gc_failure_total(self) -> int:
        with self.lock:
            return sum(self.gc_failures.values())

    def get_result(self, key: str) -> LastResult | None:
        with self.lock:
            return self.last_results.get(key)

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                "reconcile_outcomes": dict(self.outcomes),
                "gc_failures": dict(self.gc_failures),
                "last_results": [asdict(r) for r in self.last_results.values()],
            }

from __future__ import annotations


class ReconcilerError(Exception):
    pass


class NotFound(ReconcilerError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExists(ReconcilerError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class Conflict(ReconcilerError):
    """The object was modified since it was read (stale resource_version)."""

    def __init__(self, kind: str, namespace: str, name: str, expected: int, actual: int):
        super().__init__(
            f"{kind} {namespace}/{name} was modified: expected resource_version {expected}, found {actual}"
        )
        self.kind = kind
        self.namespace = namespace
        self.name = name


class DecodeError(ReconcilerError):
    """Override annotations could not be decoded into components."""


class DuplicateComponentError(DecodeError):
    pass


class ReconcileError(ReconcilerError):
    pass


class AggregateError(ReconcilerError):
    def __init__(self, errors: list[BaseException]):
        self.errors = [e for e in errors if e is not None]
        super().__init__("; ".join(f"{type(e).__name__}: {e}" for e in self.errors))


def aggregate(errors: list[BaseException | None]) -> BaseException | None:
    """Collapse a list of errors: None when empty, the error itself when single."""
    errs = [e for e in errors if e is not None]
    if not errs:
        return None
    if len(errs) == 1:
        return errs[0]
    return AggregateError(errs)

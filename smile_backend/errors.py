"""
Exception hierarchy for the visit store.

Every error raised by the store derives from VisitStoreError so callers can
catch broadly or narrowly. A missing row is never an error: lookups return
None instead.
"""
from __future__ import annotations


class VisitStoreError(Exception):
    """Base exception for all store errors."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.operation = operation
        self.details = details or {}
        super().__init__(message)


class ConstraintViolation(VisitStoreError):
    """The store rejected a write (uniqueness or foreign-key conflict)."""
    pass


class StoreUnavailable(VisitStoreError):
    """Connection or I/O failure talking to the store."""
    pass


class MissingReferenceError(VisitStoreError):
    """A referenced client, provider or billable could not be resolved."""

    def __init__(self, kind: str, key: object, **kwargs) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key!r} does not exist", **kwargs)

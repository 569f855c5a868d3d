"""
Resolution of the parent rows a visit points to.

A visit references one client, one provider and one billable per detail line.
Before any of those rows is written, every reference goes through a
ReferencePolicy:

- AutoCreatePolicy (default): a missing row is created as a placeholder and
  the write goes on. Clients and providers get a fresh "Unknown Unknown" row
  and the caller's id is replaced by the new one; billables are created under
  the code the caller asked for.
- StrictPolicy: a missing row raises MissingReferenceError.

Resolving a reference that already exists is a pure read.
"""
from __future__ import annotations

import enum
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .errors import MissingReferenceError
from .logging_setup import get_logger
from .models import PLACEHOLDER_BILLABLE_DESCRIPTION, PLACEHOLDER_NAME
from .repositories import BillableRepository, ClientRepository, EntityRepository, ProviderRepository

logger = get_logger(__name__)


class ReferenceKind(enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    BILLABLE = "billable"


_REPOSITORIES: dict[ReferenceKind, type[EntityRepository]] = {
    ReferenceKind.CLIENT: ClientRepository,
    ReferenceKind.PROVIDER: ProviderRepository,
    ReferenceKind.BILLABLE: BillableRepository,
}


def repository_for(session: Session, kind: ReferenceKind) -> EntityRepository:
    return _REPOSITORIES[kind](session)


class ReferencePolicy(Protocol):
    def resolve(self, session: Session, kind: ReferenceKind, key: Any) -> Any:
        """Return the key the new row must reference."""
        ...


class StrictPolicy:
    """Reject writes that point to a row that does not exist."""

    def resolve(self, session: Session, kind: ReferenceKind, key: Any) -> Any:
        if not repository_for(session, kind).exists(key):
            raise MissingReferenceError(kind.value, key, operation="resolve_reference")
        return key


class AutoCreatePolicy:
    """Never reject a write: create a placeholder for each missing reference."""

    def resolve(self, session: Session, kind: ReferenceKind, key: Any) -> Any:
        repo = repository_for(session, kind)
        if repo.exists(key):
            return key

        if kind is ReferenceKind.BILLABLE:
            return self._create_billable(session, repo, key)

        new_id = repo.create(first_name=PLACEHOLDER_NAME, last_name=PLACEHOLDER_NAME)
        logger.warning("Placeholder created", kind=kind.value, requested=key, created=new_id)
        return new_id

    def _create_billable(self, session: Session, repo: EntityRepository, code: Any) -> str:
        # the code is the key: without one there is nothing to create
        if code is None or str(code).strip() == "":
            raise MissingReferenceError(ReferenceKind.BILLABLE.value, code, operation="resolve_reference")

        # SAVEPOINT: if another writer inserted the same code meanwhile,
        # the primary key rejects ours and the existing row is used
        try:
            with session.begin_nested():
                repo.create(code=code, description=PLACEHOLDER_BILLABLE_DESCRIPTION, cost=0)
        except IntegrityError:
            if not repo.exists(code):
                raise
            logger.info("Placeholder already present", kind=ReferenceKind.BILLABLE.value, code=code)
            return code

        logger.warning("Placeholder created", kind=ReferenceKind.BILLABLE.value, code=code)
        return code


def policy_from_name(name: str) -> ReferencePolicy:
    if name == "strict":
        return StrictPolicy()
    if name == "auto":
        return AutoCreatePolicy()
    raise ValueError(f"Unknown reference policy: {name!r} (expected 'auto' or 'strict')")


def default_policy() -> ReferencePolicy:
    return policy_from_name(config.REFERENCE_POLICY)


def resolve_reference(
    session: Session,
    kind: ReferenceKind,
    key: Any,
    policy: ReferencePolicy | None = None,
) -> Any:
    return (policy or default_policy()).resolve(session, kind, key)

"""
Entity repositories for clients, providers and billables.

Repository rules:
- Pure data-access logic only
- Every repository is bound to a Session passed in by the caller
- Methods flush, but never commit
"""
from __future__ import annotations

from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models import Billable, Client, Provider

ModelT = TypeVar("ModelT", Client, Provider, Billable)


class EntityRepository(Generic[ModelT]):
    model: ClassVar[type]
    key_attr: ClassVar[str] = "id"
    fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, session: Session) -> None:
        self.session = session

    @property
    def _key_column(self):
        return getattr(self.model, self.key_attr)

    def _clean(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in values.items() if k in self.fields}

    def exists(self, key: Any) -> bool:
        if key is None:
            return False
        stmt = select(self._key_column).where(self._key_column == key).limit(1)
        return self.session.execute(stmt).first() is not None

    def get(self, key: Any) -> ModelT | None:
        if key is None:
            return None
        stmt = select(self.model).where(self._key_column == key)
        return self.session.execute(stmt).scalar_one_or_none()

    def list(self) -> list[ModelT]:
        return list(self.session.scalars(select(self.model).order_by(self._key_column)))

    def create(self, **fields: Any) -> Any:
        """Insert a row and return its key (generated id, or the given code)."""
        row = self.model(**self._clean(fields))
        self.session.add(row)
        self.session.flush()
        return getattr(row, self.key_attr)

    def update(self, key: Any, **fields: Any) -> ModelT | None:
        """Update the supplied fields; None values leave the column untouched."""
        row = self.get(key)
        if row is None:
            return None
        for name, value in self._clean(fields).items():
            if value is None or name == self.key_attr:
                continue
            setattr(row, name, value)
        self.session.flush()
        return row

    def delete(self, key: Any) -> int:
        result = self.session.execute(delete(self.model).where(self._key_column == key))
        return result.rowcount or 0


class ClientRepository(EntityRepository[Client]):
    model = Client
    fields = ("first_name", "last_name", "dob", "phone", "email", "address")


class ProviderRepository(EntityRepository[Provider]):
    model = Provider
    fields = ("first_name", "last_name", "specialty", "phone", "email")


class BillableRepository(EntityRepository[Billable]):
    model = Billable
    key_attr = "code"
    fields = ("code", "description", "cost")

    def upsert(self, code: str, description: str, cost: float) -> None:
        """Insert or replace the row for code."""
        self.session.merge(Billable(code=code, description=description, cost=cost))
        self.session.flush()

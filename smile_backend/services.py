from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from .db import Base, db_session, get_engine
from .errors import MissingReferenceError
from .logging_setup import get_logger
from .models import Client, Provider, Visit, VisitDetail, VisitImage
from .references import ReferenceKind, ReferencePolicy, default_policy
from .repositories import BillableRepository, ClientRepository, ProviderRepository

logger = get_logger(__name__)


# =========================
# Bootstrap DB
# =========================
def init_db() -> None:
    """Create the tables if they do not exist."""
    Base.metadata.create_all(bind=get_engine())


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class DetailLine:
    billable_code: str
    quantity: int | None = None


@dataclass(frozen=True)
class ImageUpload:
    name: str | None
    type: str | None
    data: bytes | None


@dataclass(frozen=True)
class VisitDetailRow:
    id: int
    visit_id: int
    billable_code: str
    quantity: int


@dataclass(frozen=True)
class VisitImageMeta:
    id: int
    name: str | None
    type: str | None


@dataclass(frozen=True)
class VisitImageFull:
    id: int
    visit_id: int
    name: str | None
    type: str | None
    data: bytes | None


@dataclass(frozen=True)
class VisitAggregate:
    id: int
    client_id: int
    provider_id: int
    visit_date: str | None
    paid: bool
    notes: str | None
    details: list[VisitDetailRow] = field(default_factory=list)
    images: list[VisitImageMeta] = field(default_factory=list)


def _as_detail(line: DetailLine | Mapping[str, Any]) -> DetailLine:
    if isinstance(line, DetailLine):
        return line
    code = line.get("billable_code") or line.get("code")
    return DetailLine(billable_code=code, quantity=line.get("quantity"))


def _as_image(image: ImageUpload | Mapping[str, Any]) -> ImageUpload:
    if isinstance(image, ImageUpload):
        return image
    return ImageUpload(name=image.get("name"), type=image.get("type"), data=image.get("data"))


def _client_flat(c: Client) -> dict:
    return {
        "id": c.id,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "dob": c.dob,
        "phone": c.phone,
        "email": c.email,
        "address": c.address,
    }


def _provider_flat(p: Provider) -> dict:
    return {
        "id": p.id,
        "first_name": p.first_name,
        "last_name": p.last_name,
        "specialty": p.specialty,
        "phone": p.phone,
        "email": p.email,
    }


def _billable_flat(b) -> dict:
    return {"code": b.code, "description": b.description, "cost": b.cost}


def _visit_flat(v: Visit) -> dict:
    return {
        "id": v.id,
        "client_id": v.client_id,
        "provider_id": v.provider_id,
        "visit_date": v.visit_date,
        "paid": bool(v.paid),
        "notes": v.notes,
    }


# =========================
# Clients
# =========================
def list_clients() -> list[dict]:
    with db_session("list_clients") as s:
        return [_client_flat(c) for c in ClientRepository(s).list()]


def get_client(client_id: int) -> dict | None:
    with db_session("get_client") as s:
        c = ClientRepository(s).get(client_id)
        return _client_flat(c) if c else None


def create_client(
    first_name: str,
    last_name: str,
    dob: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> dict:
    with db_session("create_client") as s:
        repo = ClientRepository(s)
        client_id = repo.create(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            dob=dob,
            phone=phone,
            email=email,
            address=address,
        )
        return _client_flat(repo.get(client_id))


def update_client(client_id: int, **fields: Any) -> dict | None:
    with db_session("update_client") as s:
        c = ClientRepository(s).update(client_id, **fields)
        return _client_flat(c) if c else None


def delete_client(client_id: int) -> bool:
    with db_session("delete_client") as s:
        return ClientRepository(s).delete(client_id) > 0


# =========================
# Providers
# =========================
def list_providers() -> list[dict]:
    with db_session("list_providers") as s:
        return [_provider_flat(p) for p in ProviderRepository(s).list()]


def get_provider(provider_id: int) -> dict | None:
    with db_session("get_provider") as s:
        p = ProviderRepository(s).get(provider_id)
        return _provider_flat(p) if p else None


def create_provider(
    first_name: str,
    last_name: str,
    specialty: str | None = None,
    phone: str | None = None,
    email: str | None = None,
) -> dict:
    with db_session("create_provider") as s:
        repo = ProviderRepository(s)
        provider_id = repo.create(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            specialty=specialty,
            phone=phone,
            email=email,
        )
        return _provider_flat(repo.get(provider_id))


def update_provider(provider_id: int, **fields: Any) -> dict | None:
    with db_session("update_provider") as s:
        p = ProviderRepository(s).update(provider_id, **fields)
        return _provider_flat(p) if p else None


def delete_provider(provider_id: int) -> bool:
    with db_session("delete_provider") as s:
        return ProviderRepository(s).delete(provider_id) > 0


# =========================
# Billables
# =========================
def list_billables() -> list[dict]:
    with db_session("list_billables") as s:
        return [_billable_flat(b) for b in BillableRepository(s).list()]


def get_billable(code: str) -> dict | None:
    with db_session("get_billable") as s:
        b = BillableRepository(s).get(code)
        return _billable_flat(b) if b else None


def create_billable(code: str, description: str, cost: float = 0) -> dict:
    code = (code or "").strip()
    if not code:
        raise MissingReferenceError("billable", code, operation="create_billable")

    with db_session("create_billable") as s:
        repo = BillableRepository(s)
        repo.create(code=code, description=description, cost=cost)
        return _billable_flat(repo.get(code))


def update_billable(code: str, **fields: Any) -> dict | None:
    with db_session("update_billable") as s:
        b = BillableRepository(s).update(code, **fields)
        return _billable_flat(b) if b else None


def delete_billable(code: str) -> bool:
    with db_session("delete_billable") as s:
        return BillableRepository(s).delete(code) > 0


def _parse_cost(raw: Any) -> float:
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, str):
        return float(raw.replace("$", "").replace(",", "").strip() or 0)
    return float(raw)


def import_billables(rows: Iterable[Mapping[str, Any]]) -> int:
    """
    Bulk load of a fee schedule (insert or replace by code).
    Accepts both the practice-software export ("Procedure Code", "Price")
    and our own field names. Rows without a code are skipped.
    Returns the number of rows written.
    """
    written = 0
    with db_session("import_billables") as s:
        repo = BillableRepository(s)
        for row in rows:
            code = row.get("Procedure Code") or row.get("code") or row.get("BillableCode")
            if not code:
                continue
            description = (
                row.get("Description") or row.get("Abbrev Description") or row.get("description") or ""
            )
            price = row.get("Price") or row.get("Cost") or row.get("cost") or 0
            repo.upsert(str(code).strip(), description, _parse_cost(price))
            written += 1

    logger.info("Billables imported", written=written)
    return written


# =========================
# Visit aggregate: read
# =========================
def _read_visit(s: Session, visit_id: int) -> VisitAggregate | None:
    v = s.execute(select(Visit).where(Visit.id == visit_id)).scalar_one_or_none()
    if v is None:
        return None

    details = s.execute(
        select(VisitDetail).where(VisitDetail.visit_id == visit_id).order_by(VisitDetail.id.asc())
    ).scalars()
    images = s.execute(
        select(VisitImage.id, VisitImage.name, VisitImage.type)
        .where(VisitImage.visit_id == visit_id)
        .order_by(VisitImage.id.asc())
    ).all()

    return VisitAggregate(
        id=v.id,
        client_id=v.client_id,
        provider_id=v.provider_id,
        visit_date=v.visit_date,
        paid=bool(v.paid),
        notes=v.notes,
        details=[
            VisitDetailRow(id=d.id, visit_id=d.visit_id, billable_code=d.billable_code, quantity=d.quantity)
            for d in details
        ],
        images=[VisitImageMeta(id=r.id, name=r.name, type=r.type) for r in images],
    )


def get_visit(visit_id: int) -> VisitAggregate | None:
    """Visit with its detail lines and image metadata (no payloads)."""
    with db_session("get_visit") as s:
        return _read_visit(s, visit_id)


def get_image(image_id: int) -> VisitImageFull | None:
    """Single image including its binary payload."""
    with db_session("get_image") as s:
        img = s.get(VisitImage, image_id)
        if img is None:
            return None
        return VisitImageFull(id=img.id, visit_id=img.visit_id, name=img.name, type=img.type, data=img.data)


def list_visits() -> list[dict]:
    """Visit rows only, with the client/provider names for display."""
    with db_session("list_visits") as s:
        rows = s.execute(
            select(
                Visit,
                Client.first_name.label("client_first_name"),
                Client.last_name.label("client_last_name"),
                Provider.first_name.label("provider_first_name"),
                Provider.last_name.label("provider_last_name"),
            )
            .join(Client, Client.id == Visit.client_id)
            .join(Provider, Provider.id == Visit.provider_id)
            .order_by(Visit.id.asc())
        ).all()
        return [
            {
                **_visit_flat(r.Visit),
                "client_name": f"{r.client_first_name} {r.client_last_name}",
                "provider_name": f"{r.provider_first_name} {r.provider_last_name}",
            }
            for r in rows
        ]


# =========================
# Visit aggregate: write (use case core)
# =========================
def create_visit(
    client_id: int | None,
    provider_id: int | None,
    visit_date: str | None = None,
    paid: Any = False,
    notes: str | None = None,
    details: Iterable[DetailLine | Mapping[str, Any]] = (),
    images: Iterable[ImageUpload | Mapping[str, Any]] = (),
    policy: ReferencePolicy | None = None,
) -> VisitAggregate:
    """
    Use case: record a visit.
    - resolves client, provider and every billable code through the policy
      (by default missing rows are created as placeholders)
    - inserts the visit, then its detail lines and images
    - everything happens in one transaction: on any failure nothing is kept
    - returns the aggregate as re-read from the store
    """
    policy = policy or default_policy()
    lines = [_as_detail(d) for d in details]
    uploads = [_as_image(i) for i in images]

    with db_session("create_visit") as s:
        client_id = policy.resolve(s, ReferenceKind.CLIENT, client_id)
        provider_id = policy.resolve(s, ReferenceKind.PROVIDER, provider_id)
        for line in lines:
            policy.resolve(s, ReferenceKind.BILLABLE, line.billable_code)

        visit = Visit(
            client_id=client_id,
            provider_id=provider_id,
            visit_date=visit_date,
            paid=1 if paid else 0,
            notes=notes,
        )
        s.add(visit)
        s.flush()

        for line in lines:
            # quantity 0 counts as "not given"
            s.add(VisitDetail(visit_id=visit.id, billable_code=line.billable_code, quantity=line.quantity or 1))

        for up in uploads:
            s.add(VisitImage(visit_id=visit.id, name=up.name, type=up.type, data=up.data))

        s.flush()

        logger.info(
            "Visit created",
            visit_id=visit.id,
            client_id=client_id,
            provider_id=provider_id,
            details=len(lines),
            images=len(uploads),
        )
        return _read_visit(s, visit.id)


def update_visit(
    visit_id: int,
    client_id: int | None = None,
    provider_id: int | None = None,
    visit_date: str | None = None,
    paid: Any = None,
    notes: str | None = None,
) -> dict | None:
    """Plain update of the visit row; detail lines and images are left alone."""
    values: dict[str, Any] = {}
    if client_id is not None:
        values["client_id"] = client_id
    if provider_id is not None:
        values["provider_id"] = provider_id
    if visit_date is not None:
        values["visit_date"] = visit_date
    if paid is not None:
        values["paid"] = 1 if paid else 0
    if notes is not None:
        values["notes"] = notes

    with db_session("update_visit") as s:
        if values:
            s.execute(update(Visit).where(Visit.id == visit_id).values(**values))
        v = s.get(Visit, visit_id)
        return _visit_flat(v) if v else None


# =========================
# Visit aggregate: delete
# =========================
def delete_visit(visit_id: int) -> int:
    """
    Remove a visit and its children, children first: the store does not
    cascade, and the visit row is still referenced until they are gone.
    Returns the number of rows removed (0 if the visit did not exist).
    """
    with db_session("delete_visit") as s:
        n_details = s.execute(delete(VisitDetail).where(VisitDetail.visit_id == visit_id)).rowcount or 0
        n_images = s.execute(delete(VisitImage).where(VisitImage.visit_id == visit_id)).rowcount or 0
        n_visits = s.execute(delete(Visit).where(Visit.id == visit_id)).rowcount or 0

    logger.info("Visit deleted", visit_id=visit_id, visits=n_visits, details=n_details, images=n_images)
    return n_details + n_images + n_visits

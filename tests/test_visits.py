"""
Tests for the visit aggregate (create / read / delete) in `smile_backend/services.py`.
"""

from __future__ import annotations

from dataclasses import fields

import pytest
from sqlalchemy import func, select

from smile_backend.db import db_session
from smile_backend.errors import ConstraintViolation, MissingReferenceError
from smile_backend.models import Billable, Client, Provider, Visit, VisitDetail, VisitImage
from smile_backend.references import AutoCreatePolicy, ReferenceKind, StrictPolicy
from smile_backend.services import (
    DetailLine,
    ImageUpload,
    VisitImageMeta,
    create_billable,
    create_client,
    create_provider,
    create_visit,
    delete_client,
    delete_visit,
    get_billable,
    get_client,
    get_image,
    get_visit,
    list_visits,
    update_visit,
)
from smile_backend.tools.check_orphans import count_orphans

PNG = b"\x89PNG\r\n\x1a\n\x00\x00fake"


def _count(model, **where) -> int:
    with db_session() as s:
        stmt = select(func.count()).select_from(model)
        for name, value in where.items():
            stmt = stmt.where(getattr(model, name) == value)
        return s.execute(stmt).scalar_one()


@pytest.fixture
def client_id() -> int:
    return create_client("Ada", "Lovelace", email="ada@example.com")["id"]


@pytest.fixture
def provider_id() -> int:
    return create_provider("Sam", "Molar", specialty="General dentistry")["id"]


def test_create_visit_with_known_references(client_id: int, provider_id: int) -> None:
    create_billable("D0120", "Periodic oral evaluation", 65.0)

    visit = create_visit(
        client_id,
        provider_id,
        visit_date="2026-03-02",
        paid=True,
        notes="Routine check",
        details=[DetailLine("D0120", 1)],
    )

    assert visit.client_id == client_id
    assert visit.provider_id == provider_id
    assert visit.visit_date == "2026-03-02"
    assert visit.paid is True
    assert visit.notes == "Routine check"
    assert [(d.billable_code, d.quantity) for d in visit.details] == [("D0120", 1)]
    assert visit.images == []
    assert _count(Client) == 1
    assert _count(Provider) == 1
    assert get_billable("D0120")["description"] == "Periodic oral evaluation"


def test_create_visit_repairs_missing_references() -> None:
    visit = create_visit(
        client_id=501,
        provider_id=502,
        visit_date="01/14/2026",
        details=[{"code": "X9"}],
    )

    assert visit.client_id != 501
    assert visit.provider_id != 502
    assert get_client(visit.client_id)["first_name"] == "Unknown"
    assert get_billable("X9") == {"code": "X9", "description": "Auto created", "cost": 0}


def test_quantity_defaults_to_one_per_line() -> None:
    visit = create_visit(
        None,
        None,
        details=[{"code": "X1", "quantity": 2}, {"code": "X1"}, DetailLine("X1", 0)],
    )

    assert [(d.billable_code, d.quantity) for d in visit.details] == [("X1", 2), ("X1", 1), ("X1", 1)]
    assert _count(VisitDetail, visit_id=visit.id) == 3
    assert _count(Billable) == 1


def test_paid_flag_stored_as_integer(client_id: int, provider_id: int) -> None:
    paid = create_visit(client_id, provider_id, paid="yes")
    unpaid = create_visit(client_id, provider_id, paid=0)

    with db_session() as s:
        assert s.get(Visit, paid.id).paid == 1
        assert s.get(Visit, unpaid.id).paid == 0


def test_get_visit_matches_what_was_inserted(client_id: int, provider_id: int) -> None:
    created = create_visit(
        client_id,
        provider_id,
        visit_date="2026-04-10",
        details=[DetailLine("D2740", 1), DetailLine("D0220", 3)],
        images=[
            ImageUpload("bitewing.png", "image/png", PNG),
            {"name": "note.txt", "type": "text/plain", "data": b"left molar"},
        ],
    )

    visit = get_visit(created.id)

    assert visit == created
    assert [(d.billable_code, d.quantity) for d in visit.details] == [("D2740", 1), ("D0220", 3)]
    assert [(i.name, i.type) for i in visit.images] == [("bitewing.png", "image/png"), ("note.txt", "text/plain")]
    assert all(isinstance(i, VisitImageMeta) for i in visit.images)
    assert "data" not in {f.name for f in fields(VisitImageMeta)}


def test_details_keep_insertion_order(client_id: int, provider_id: int) -> None:
    codes = ["Z3", "A1", "M2", "A1"]
    visit = create_visit(client_id, provider_id, details=[DetailLine(c) for c in codes])

    assert [d.billable_code for d in get_visit(visit.id).details] == codes


def test_get_image_returns_payload(client_id: int, provider_id: int) -> None:
    visit = create_visit(client_id, provider_id, images=[ImageUpload("xray.png", "image/png", PNG)])

    image = get_image(visit.images[0].id)

    assert image.data == PNG
    assert image.visit_id == visit.id
    assert image.name == "xray.png"


def test_get_missing_visit_and_image_return_none() -> None:
    assert get_visit(12345) is None
    assert get_image(12345) is None


def test_resolution_happens_before_any_visit_row() -> None:
    with pytest.raises(MissingReferenceError):
        create_visit(None, None, details=[{"code": ""}])

    assert _count(Visit) == 0
    assert _count(Client) == 0
    assert _count(Provider) == 0


def test_strict_policy_writes_nothing(provider_id: int) -> None:
    with pytest.raises(MissingReferenceError):
        create_visit(999, provider_id, details=[DetailLine("D0120")], policy=StrictPolicy())

    assert _count(Visit) == 0
    assert _count(Client) == 0


class _TrustBillables(AutoCreatePolicy):
    """Skips billable repair so that the detail insert hits the foreign key."""

    def resolve(self, session, kind, key):
        if kind is ReferenceKind.BILLABLE:
            return key
        return super().resolve(session, kind, key)


def test_failure_mid_aggregate_rolls_everything_back() -> None:
    with pytest.raises(ConstraintViolation) as exc_info:
        create_visit(
            client_id=1,
            provider_id=1,
            details=[DetailLine("NOT-THERE")],
            images=[ImageUpload("a.png", "image/png", PNG)],
            policy=_TrustBillables(),
        )

    assert exc_info.value.operation == "create_visit"
    assert _count(Visit) == 0
    assert _count(VisitDetail) == 0
    assert _count(VisitImage) == 0
    assert _count(Client) == 0
    assert _count(Provider) == 0


def test_delete_visit_removes_children(client_id: int, provider_id: int) -> None:
    visit = create_visit(
        client_id,
        provider_id,
        details=[DetailLine("D1110"), DetailLine("D1206")],
        images=[ImageUpload("a.png", "image/png", PNG)],
    )
    image_id = visit.images[0].id

    removed = delete_visit(visit.id)

    assert removed == 4
    assert get_visit(visit.id) is None
    assert get_image(image_id) is None
    assert _count(VisitDetail, visit_id=visit.id) == 0
    assert _count(VisitImage, visit_id=visit.id) == 0
    assert all(n == 0 for n in count_orphans().values())


def test_delete_visit_keeps_parents(client_id: int, provider_id: int) -> None:
    visit = create_visit(client_id, provider_id, details=[DetailLine("D1110")])

    delete_visit(visit.id)

    assert get_client(client_id) is not None
    assert get_billable("D1110") is not None


def test_delete_missing_visit_is_noop(client_id: int, provider_id: int) -> None:
    other = create_visit(client_id, provider_id, details=[DetailLine("D1110")])

    assert delete_visit(999) == 0
    assert get_visit(other.id) == other


def test_client_with_visits_cannot_be_deleted(client_id: int, provider_id: int) -> None:
    create_visit(client_id, provider_id)

    with pytest.raises(ConstraintViolation):
        delete_client(client_id)

    assert get_client(client_id) is not None


def test_list_visits_includes_names(client_id: int, provider_id: int) -> None:
    create_visit(client_id, provider_id, visit_date="2026-05-01", paid=True)
    create_visit(None, provider_id)

    rows = list_visits()

    assert [r["client_name"] for r in rows] == ["Ada Lovelace", "Unknown Unknown"]
    assert rows[0]["provider_name"] == "Sam Molar"
    assert rows[0]["paid"] is True
    assert "details" not in rows[0]


def test_update_visit_changes_row_only(client_id: int, provider_id: int) -> None:
    visit = create_visit(client_id, provider_id, notes="first", details=[DetailLine("D1110")])

    row = update_visit(visit.id, paid=True, notes="second")

    assert row["paid"] is True
    assert row["notes"] == "second"
    assert row["client_id"] == client_id
    assert get_visit(visit.id).details == visit.details
    assert update_visit(999, notes="x") is None


def test_detail_mapping_falls_back_to_code_key(client_id: int, provider_id: int) -> None:
    visit = create_visit(client_id, provider_id, details=[{"billable_code": None, "code": "X1", "quantity": 3}])

    assert [(d.billable_code, d.quantity) for d in visit.details] == [("X1", 3)]
    assert get_billable("X1")["description"] == "Auto created"

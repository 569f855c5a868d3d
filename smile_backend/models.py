from __future__ import annotations

from sqlalchemy import Float, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base

PLACEHOLDER_NAME = "Unknown"
PLACEHOLDER_BILLABLE_DESCRIPTION = "Auto created"


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False)
    dob: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"Client({self.first_name} {self.last_name})"


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)

    def __repr__(self) -> str:
        return f"Provider({self.first_name} {self.last_name}, {self.specialty})"


class Billable(Base):
    __tablename__ = "billables"

    # business code chosen by the practice, not a surrogate key
    code: Mapped[str] = mapped_column(String(40), primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"Billable({self.code}, {self.cost})"


class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id"), nullable=False)

    # stored as given by the caller, no date parsing
    visit_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    paid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # 1=paid, 0=not paid
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class VisitDetail(Base):
    __tablename__ = "visit_details"

    # (visit_id, billable_code) is intentionally not unique: a code may appear on several lines
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    visit_id: Mapped[int] = mapped_column(ForeignKey("visits.id"), nullable=False, index=True)
    billable_code: Mapped[str] = mapped_column(ForeignKey("billables.code"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class VisitImage(Base):
    __tablename__ = "visit_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    visit_id: Mapped[int] = mapped_column(ForeignKey("visits.id"), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    data: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

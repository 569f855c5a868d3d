from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from smile_backend import config
from smile_backend.errors import ConstraintViolation, MissingReferenceError, StoreUnavailable
from smile_backend.logging_setup import get_logger, setup_logging
from smile_backend.services import (
    DetailLine,
    ImageUpload,
    create_billable,
    create_client,
    create_provider,
    create_visit,
    delete_billable,
    delete_client,
    delete_provider,
    delete_visit,
    get_billable,
    get_client,
    get_image,
    get_provider,
    get_visit,
    init_db,
    list_billables,
    list_clients,
    list_providers,
    list_visits,
    update_billable,
    update_client,
    update_provider,
    update_visit,
)

logger = get_logger("smile_backend.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    init_db()
    logger.info("API starting", reference_policy=config.REFERENCE_POLICY)
    yield
    logger.info("API shutting down")


app = FastAPI(title="Smile Design API", version="1.0.0", lifespan=lifespan)


# Error mapping

@app.exception_handler(ConstraintViolation)
async def _constraint_violation(request: Request, exc: ConstraintViolation) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})


@app.exception_handler(MissingReferenceError)
async def _missing_reference(request: Request, exc: MissingReferenceError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": str(exc), "kind": exc.kind, "key": exc.key},
    )


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Store unavailable", operation=exc.operation, error=str(exc))
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"error": str(exc)})


# Schemas

class ClientIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    dob: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None


class ClientUpdateIn(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    dob: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None


class ProviderIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    specialty: str | None = None
    phone: str | None = None
    email: str | None = None


class ProviderUpdateIn(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    specialty: str | None = None
    phone: str | None = None
    email: str | None = None


class BillableIn(BaseModel):
    code: str = Field(..., min_length=1)
    description: str = ""
    cost: float = 0


class BillableUpdateIn(BaseModel):
    description: str | None = None
    cost: float | None = None


class VisitDetailIn(BaseModel):
    billable_code: str
    quantity: int | None = None


class VisitImageIn(BaseModel):
    name: str | None = None
    type: str | None = None
    data: str | None = None  # base64


class VisitCreateIn(BaseModel):
    # ids that do not exist are replaced by placeholders
    client_id: int | None = None
    provider_id: int | None = None
    visit_date: str | None = None
    paid: bool = False
    notes: str | None = None
    details: list[VisitDetailIn] = Field(default_factory=list)
    images: list[VisitImageIn] = Field(default_factory=list)


class VisitUpdateIn(BaseModel):
    client_id: int | None = None
    provider_id: int | None = None
    visit_date: str | None = None
    paid: bool | None = None
    notes: str | None = None


def _decode_payload(data: str | None) -> bytes | None:
    if data is None:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail="Image data must be base64")


def _or_404(row: Any) -> Any:
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return row


@app.get("/")
def root() -> Response:
    return Response(content="Smile Design Manhattan API", media_type="text/plain")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Clients

@app.get("/clients")
def api_clients() -> list[dict]:
    return list_clients()


@app.get("/clients/{client_id}")
def api_client(client_id: int) -> dict:
    return _or_404(get_client(client_id))


@app.post("/clients", status_code=status.HTTP_201_CREATED)
def api_create_client(payload: ClientIn) -> dict:
    return create_client(**payload.model_dump())


@app.put("/clients/{client_id}")
def api_update_client(client_id: int, payload: ClientUpdateIn) -> dict:
    return _or_404(update_client(client_id, **payload.model_dump(exclude_unset=True)))


@app.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_client(client_id: int) -> Response:
    delete_client(client_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Providers

@app.get("/providers")
def api_providers() -> list[dict]:
    return list_providers()


@app.get("/providers/{provider_id}")
def api_provider(provider_id: int) -> dict:
    return _or_404(get_provider(provider_id))


@app.post("/providers", status_code=status.HTTP_201_CREATED)
def api_create_provider(payload: ProviderIn) -> dict:
    return create_provider(**payload.model_dump())


@app.put("/providers/{provider_id}")
def api_update_provider(provider_id: int, payload: ProviderUpdateIn) -> dict:
    return _or_404(update_provider(provider_id, **payload.model_dump(exclude_unset=True)))


@app.delete("/providers/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_provider(provider_id: int) -> Response:
    delete_provider(provider_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Billables

@app.get("/billables")
def api_billables() -> list[dict]:
    return list_billables()


@app.get("/billables/{code}")
def api_billable(code: str) -> dict:
    return _or_404(get_billable(code))


@app.post("/billables", status_code=status.HTTP_201_CREATED)
def api_create_billable(payload: BillableIn) -> dict:
    return create_billable(payload.code, payload.description, payload.cost)


@app.put("/billables/{code}")
def api_update_billable(code: str, payload: BillableUpdateIn) -> dict:
    return _or_404(update_billable(code, **payload.model_dump(exclude_unset=True)))


@app.delete("/billables/{code}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_billable(code: str) -> Response:
    delete_billable(code)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Visits

@app.get("/visits")
def api_visits() -> list[dict]:
    return list_visits()


@app.get("/visits/{visit_id}")
def api_visit(visit_id: int) -> dict:
    return asdict(_or_404(get_visit(visit_id)))


@app.post("/visits", status_code=status.HTTP_201_CREATED)
def api_create_visit(payload: VisitCreateIn) -> dict:
    visit = create_visit(
        client_id=payload.client_id,
        provider_id=payload.provider_id,
        visit_date=payload.visit_date,
        paid=payload.paid,
        notes=payload.notes,
        details=[DetailLine(d.billable_code, d.quantity) for d in payload.details],
        images=[ImageUpload(i.name, i.type, _decode_payload(i.data)) for i in payload.images],
    )
    return asdict(visit)


@app.put("/visits/{visit_id}")
def api_update_visit(visit_id: int, payload: VisitUpdateIn) -> dict:
    return _or_404(update_visit(visit_id, **payload.model_dump(exclude_unset=True)))


@app.delete("/visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_visit(visit_id: int) -> Response:
    delete_visit(visit_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/images/{image_id}")
def api_image(image_id: int) -> dict:
    img = _or_404(get_image(image_id))
    return {
        "id": img.id,
        "visit_id": img.visit_id,
        "name": img.name,
        "type": img.type,
        "data": base64.b64encode(img.data).decode("ascii") if img.data is not None else None,
    }

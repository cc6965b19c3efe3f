"""
Router FastAPI per il Registro Fatture
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Definisce gli endpoint API per bozze, conferma, consultazione,
vista normalizzata e timbro fiscale dei documenti.
"""

import logging
import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Header, Path, Query, status
from fastapi.responses import JSONResponse

from app.core.deps import DbSession
from app.core.tax_rules import DocumentType
from app.models.invoice import InvoiceStatus
from app.schemas.invoice import (
    InvoiceConfirm,
    InvoiceCreate,
    InvoiceList,
    InvoiceRead,
    NormalizedInvoice,
)
from app.services.fiscal_service import FiscalGateway, FiscalStampService, MockFiscalGateway
from app.services.invoice_service import InvoiceService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Istanze dei service
invoice_service = InvoiceService()
fiscal_stamp_service = FiscalStampService(
    audit=invoice_service.audit,
    settings_service=invoice_service.settings_service,
)
mock_fiscal_gateway = MockFiscalGateway()


def get_fiscal_gateway() -> FiscalGateway:
    """Gateway fiscale in uso; sostituibile con un dispositivo reale."""
    return mock_fiscal_gateway


# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Registro Fatture"],
)


# -------------------------------------------------------------------
# Endpoints per Documenti
# -------------------------------------------------------------------

@router.get(
    "/",
    name="documenti_lista",
    summary="Lista documenti",
    description="Recupera la lista paginata dei documenti del tenant, dal più recente.",
    response_model=InvoiceList,
    status_code=status.HTTP_200_OK,
)
async def get_invoices(
    db: DbSession,
    status_filter: Optional[InvoiceStatus] = Query(
        None,
        alias="status",
        description="Filtro per stato (DRAFT, CONFIRMED)",
    ),
    document_type: Optional[DocumentType] = Query(
        None,
        alias="type",
        description="Filtro per tipo documento",
    ),
    page: int = Query(1, ge=1, description="Numero pagina"),
    limit: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
) -> InvoiceList:
    return await invoice_service.get_all(
        db=db,
        page=page,
        limit=limit,
        status_filter=status_filter,
        document_type=document_type,
    )


@router.post(
    "/draft",
    name="documento_bozza",
    summary="Crea bozza",
    description="Crea un documento in bozza calcolando i totali di ogni riga.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_draft(
    data: InvoiceCreate,
    db: DbSession,
) -> InvoiceRead:
    """
    Crea un documento in bozza.

    - Almeno una riga
    - Gruppo fiscale compatibile con la natura di ogni articolo
    - Importi come stringhe decimali
    """
    invoice = await invoice_service.create_draft(db, data)
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/{invoice_id}/confirm",
    name="documento_conferma",
    summary="Conferma documento",
    description=(
        "Conferma una bozza assegnando il numero fiscale. "
        "Con X-Idempotency-Key la stessa richiesta ripetuta restituisce la stessa risposta."
    ),
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def confirm_invoice(
    db: DbSession,
    invoice_id: uuid.UUID = Path(..., description="UUID del documento"),
    data: Optional[InvoiceConfirm] = Body(None),
    idempotency_key: Annotated[
        Optional[str],
        Header(alias="X-Idempotency-Key", max_length=255),
    ] = None,
) -> JSONResponse:
    response, replayed = await invoice_service.confirm_idempotent(
        db,
        invoice_id,
        idempotency_key,
        data.equivalent_currency_code if data else None,
    )
    headers = {"X-Idempotent-Replay": "true"} if replayed else None
    return JSONResponse(content=response, headers=headers)


@router.get(
    "/number/{number}",
    name="documento_per_numero",
    summary="Dettaglio documento per numero",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def get_invoice_by_number(
    db: DbSession,
    number: str = Path(..., max_length=40, description="Numero fiscale"),
) -> InvoiceRead:
    invoice = await invoice_service.get_by_number(db, number)
    return InvoiceRead.model_validate(invoice)


@router.get(
    "/{invoice_id}",
    name="documento_dettaglio",
    summary="Dettaglio documento",
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def get_invoice(
    db: DbSession,
    invoice_id: uuid.UUID = Path(..., description="UUID del documento"),
) -> InvoiceRead:
    invoice = await invoice_service.get_by_id(db, invoice_id)
    return InvoiceRead.model_validate(invoice)


@router.get(
    "/{invoice_id}/normalized",
    name="documento_normalizzato",
    summary="Vista normalizzata",
    description="Payload canonico del documento e relativo hash SHA-256.",
    response_model=NormalizedInvoice,
    status_code=status.HTTP_200_OK,
)
async def get_normalized_invoice(
    db: DbSession,
    invoice_id: uuid.UUID = Path(..., description="UUID del documento"),
) -> NormalizedInvoice:
    return await invoice_service.normalized(db, invoice_id)


@router.post(
    "/{invoice_id}/fiscal-stamp",
    name="documento_timbro_fiscale",
    summary="Timbro fiscale",
    description=(
        "Richiede la certificazione del documento confermato al dispositivo fiscale "
        "e la registra dopo la verifica dei totali."
    ),
    response_model=InvoiceRead,
    status_code=status.HTTP_200_OK,
)
async def apply_fiscal_stamp(
    db: DbSession,
    invoice_id: uuid.UUID = Path(..., description="UUID del documento"),
    gateway: FiscalGateway = Depends(get_fiscal_gateway),
) -> InvoiceRead:
    invoice = await fiscal_stamp_service.apply_stamp(db, invoice_id, gateway)
    return InvoiceRead.model_validate(invoice)

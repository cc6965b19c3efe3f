"""
Router FastAPI per i Tassi di Cambio
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

from typing import Optional

from fastapi import APIRouter, Path, Query, status

from app.api.v1.invoices import invoice_service
from app.core.deps import DbSession
from app.schemas.exchange_rate import ExchangeRateCreate, ExchangeRateRead
from app.services.fx_service import ExchangeRateService

# Il service condivide il registro di audit del registro fatture
exchange_rate_service = ExchangeRateService(invoice_service.audit)

router = APIRouter(
    prefix="/fx-rates",
    tags=["Tassi di Cambio"],
)


@router.post(
    "/",
    name="tassi_crea",
    summary="Registra tasso",
    description="Registra un tasso di cambio manuale rispetto alla valuta di base.",
    response_model=ExchangeRateRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_rate(data: ExchangeRateCreate, db: DbSession) -> ExchangeRateRead:
    fx_rate = await exchange_rate_service.create(db, data)
    return ExchangeRateRead.model_validate(fx_rate)


@router.get(
    "/",
    name="tassi_lista",
    summary="Lista tassi",
    response_model=list[ExchangeRateRead],
    status_code=status.HTTP_200_OK,
)
async def list_rates(
    db: DbSession,
    quote: Optional[str] = Query(None, min_length=3, max_length=3, description="Valuta quotata"),
) -> list[ExchangeRateRead]:
    rates = await exchange_rate_service.get_all(db, quote)
    return [ExchangeRateRead.model_validate(fx_rate) for fx_rate in rates]


@router.get(
    "/latest/{quote}",
    name="tassi_ultimo",
    summary="Tasso più recente",
    response_model=ExchangeRateRead,
    status_code=status.HTTP_200_OK,
)
async def latest_rate(
    db: DbSession,
    quote: str = Path(..., min_length=3, max_length=3, description="Valuta quotata"),
) -> ExchangeRateRead:
    fx_rate = await exchange_rate_service.latest(db, quote)
    return ExchangeRateRead.model_validate(fx_rate)

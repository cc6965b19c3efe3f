"""
Router FastAPI per le Impostazioni del Registro
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

from fastapi import APIRouter, status

from app.api.v1.invoices import invoice_service
from app.core.deps import DbSession
from app.schemas.tenant_settings import TenantSettingsRead, TenantSettingsUpdate

# Stessa istanza usata dal registro fatture per numerazione e idempotenza
settings_service = invoice_service.settings_service

router = APIRouter(
    prefix="/settings",
    tags=["Impostazioni"],
)


@router.get(
    "/",
    name="impostazioni_dettaglio",
    summary="Impostazioni del tenant",
    response_model=TenantSettingsRead,
    status_code=status.HTTP_200_OK,
)
async def get_settings(db: DbSession) -> TenantSettingsRead:
    tenant_settings = await settings_service.get(db)
    response = TenantSettingsRead.model_validate(tenant_settings)
    await db.commit()
    return response


@router.put(
    "/",
    name="impostazioni_aggiorna",
    summary="Aggiorna impostazioni",
    description="Aggiorna numerazione, validità idempotenza e controlli fiscali del tenant.",
    response_model=TenantSettingsRead,
    status_code=status.HTTP_200_OK,
)
async def update_settings(data: TenantSettingsUpdate, db: DbSession) -> TenantSettingsRead:
    tenant_settings = await settings_service.update(db, data)
    return TenantSettingsRead.model_validate(tenant_settings)

"""
Service Layer per le Impostazioni del Registro
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Ogni tenant ha una sola riga di impostazioni, creata con i default
applicativi al primo accesso tramite upsert atomico.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import dialect_insert
from app.core.exceptions import ConflictError
from app.core.tenancy import require_context
from app.models import TenantSettings
from app.models.invoice import PricingMode
from app.schemas.tenant_settings import TenantSettingsRead, TenantSettingsUpdate
from app.services.audit_service import AuditService

# Logger per questo modulo
logger = logging.getLogger(__name__)


def default_settings_values(tenant_id: uuid.UUID) -> dict:
    """Valori iniziali di un tenant, presi dalla configurazione applicativa."""
    return {
        "id": uuid.uuid4(),
        "tenant_id": tenant_id,
        "numbering_prefix": None,
        "numbering_yearly_reset": settings.numbering_yearly_reset,
        "numbering_width": settings.numbering_width,
        "idempotency_ttl_hours": settings.idempotency_ttl_hours,
        "fiscal_subtotal_check": settings.fiscal_subtotal_check,
        "default_pricing_mode": PricingMode.TTC.value,
    }


class TenantSettingsService:
    """
    Service per le impostazioni di numerazione e integrazione.

    Implementa:
    - Lettura con creazione implicita dei default
    - Aggiornamento parziale con audit
    """

    def __init__(self, audit: AuditService) -> None:
        self.audit = audit

    async def get(self, db: AsyncSession) -> TenantSettings:
        """
        Restituisce le impostazioni del tenant corrente.

        Se la riga non esiste viene inserita con i default
        (INSERT ... ON CONFLICT DO NOTHING), senza race tra richieste.

        Args:
            db: Sessione database async con contesto tenant

        Returns:
            TenantSettings: Impostazioni del tenant
        """
        tenant_id = require_context(db).require_tenant()

        result = await db.execute(select(TenantSettings))
        current = result.scalar_one_or_none()
        if current is not None:
            return current

        stmt = (
            dialect_insert(db, TenantSettings.__table__)
            .values(**default_settings_values(tenant_id))
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )
        await db.execute(stmt)

        result = await db.execute(select(TenantSettings))
        return result.scalar_one()

    async def update(
        self,
        db: AsyncSession,
        data: TenantSettingsUpdate,
    ) -> TenantSettings:
        """
        Aggiorna le impostazioni del tenant corrente.

        Args:
            db: Sessione database async
            data: Campi da modificare (solo quelli forniti)

        Returns:
            TenantSettings: Impostazioni aggiornate

        Raises:
            ConflictError: Se il salvataggio fallisce per vincoli di integrità
        """
        current = await self.get(db)
        before = TenantSettingsRead.model_validate(current).model_dump(mode="json")

        for field, value in data.model_dump(exclude_unset=True).items():
            # Solo il prefisso può tornare a None (= codice del tipo documento)
            if value is None and field != "numbering_prefix":
                continue
            if field == "default_pricing_mode":
                value = PricingMode(value).value
            setattr(current, field, value)

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore aggiornamento impostazioni tenant: %s", e)
            raise ConflictError("Impostazioni non valide") from e

        after = TenantSettingsRead.model_validate(current).model_dump(mode="json")
        logger.info("Impostazioni aggiornate per tenant %s", current.tenant_id)
        await self.audit.record(
            db,
            action="settings.update",
            resource="TenantSettings",
            resource_id=current.id,
            before=before,
            after=after,
        )
        return current

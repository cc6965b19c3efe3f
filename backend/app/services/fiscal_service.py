"""
Service Layer per il Timbro Fiscale
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Acquisisce la certificazione di un documento confermato da un dispositivo
fiscale (e-MCF / MCF) e la registra sul documento. Prima di accettarla
verifica, se abilitato dal tenant, che i totali certificati coincidano
con quelli del registro.

Il protocollo fisico dei dispositivi non fa parte del registro: qui c'è
solo il contratto del gateway e un gateway simulato offline.
"""

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError, FiscalIntegrityError, NotFoundError
from app.models import Invoice
from app.models.invoice import InvoiceStatus
from app.schemas.invoice import FiscalStampRead
from app.services.audit_service import AuditService, stable_hash
from app.services.invoice_service import normalized_payload
from app.services.settings_service import TenantSettingsService

# Logger per questo modulo
logger = logging.getLogger(__name__)

VERIFICATION_FORMAT = "RDCDEF01;{device};{signature};{tax_id};{certified_at}"


@dataclass(frozen=True)
class FiscalCertification:
    """
    Risposta di un dispositivo fiscale.

    Attributes:
        source: emcf | mcf
        device_reference: Identificativo del dispositivo (NIM / MID)
        signature: Codice di certificazione DGI
        counters: Contatori del dispositivo
        certified_at: Data/ora di certificazione
        verification_payload: Contenuto del QR code
        totals: Totali certificati {ht, vat, ttc} come stringhe decimali
    """

    source: str
    device_reference: str
    signature: str
    counters: str
    certified_at: datetime.datetime
    verification_payload: str
    totals: Optional[dict[str, str]] = None


class FiscalGateway(Protocol):
    """Contratto verso un dispositivo fiscale."""

    async def certify(self, invoice: Invoice, payload: dict[str, Any]) -> FiscalCertification:
        ...


class MockFiscalGateway:
    """
    Gateway e-MCF simulato, senza rete.

    La firma deriva dall'hash del payload normalizzato, quindi è
    deterministica per lo stesso documento.
    """

    source = "emcf"

    def __init__(
        self,
        device_id: Optional[str] = None,
        tax_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self.device_id = device_id or settings.fiscal_device_id
        self.tax_id = tax_id or settings.fiscal_tax_id
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))
        self._counter = 0

    async def certify(self, invoice: Invoice, payload: dict[str, Any]) -> FiscalCertification:
        self._counter += 1
        certified_at = self._clock()
        signature = stable_hash(payload)[:32].upper()
        verification = VERIFICATION_FORMAT.format(
            device=self.device_id,
            signature=signature,
            tax_id=self.tax_id,
            certified_at=certified_at.strftime("%Y%m%d%H%M%S"),
        )
        return FiscalCertification(
            source=self.source,
            device_reference=self.device_id,
            signature=signature,
            counters=f"{self._counter}/{self._counter} {invoice.document_type}",
            certified_at=certified_at,
            verification_payload=verification,
            totals=dict(payload["totals"]),
        )


class FiscalStampService:
    """
    Service per l'acquisizione del timbro fiscale.

    Ordine obbligato: bozza → conferma → timbro.
    """

    def __init__(
        self,
        audit: Optional[AuditService] = None,
        settings_service: Optional[TenantSettingsService] = None,
    ) -> None:
        self.audit = audit or AuditService()
        self.settings_service = settings_service or TenantSettingsService(self.audit)

    async def _load_invoice(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Invoice:
        """
        Carica il documento confermato; in caso di errore chiude la transazione.

        Raises:
            NotFoundError: Documento inesistente nel tenant
            ConflictError: Documento non ancora confermato
        """
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt.execution_options(populate_existing=True))
        invoice = result.scalar_one_or_none()
        if invoice is None:
            await db.rollback()
            raise NotFoundError(f"Documento {invoice_id} non trovato")

        if invoice.status != InvoiceStatus.CONFIRMED.value:
            error = ConflictError(
                "Solo i documenti confermati possono ricevere il timbro fiscale",
                error_code="INVOICE_NOT_CONFIRMED",
                extra={"status": invoice.status},
            )
            await db.rollback()
            raise error
        return invoice

    async def apply_stamp(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        gateway: FiscalGateway,
    ) -> Invoice:
        """
        Certifica un documento confermato e registra il timbro.

        Il dispositivo viene interrogato fuori transazione: il documento
        si rilegge con lock solo per la scrittura del timbro.

        Args:
            db: Sessione database async con contesto tenant
            invoice_id: UUID del documento
            gateway: Dispositivo fiscale da interrogare

        Returns:
            Invoice: Documento con timbro fiscale (invariato se già timbrato)

        Raises:
            NotFoundError: Documento inesistente nel tenant
            ConflictError: Documento non ancora confermato
            FiscalIntegrityError: Totali certificati diversi da quelli registrati
        """
        tenant_settings = await self.settings_service.get(db)
        subtotal_check = tenant_settings.fiscal_subtotal_check

        invoice = await self._load_invoice(db, invoice_id)
        already_stamped = invoice.fiscal_signature is not None
        payload = normalized_payload(invoice)
        await db.commit()

        if already_stamped:
            logger.info("Documento %s già timbrato, nessuna modifica", invoice_id)
            return invoice

        certification = await gateway.certify(invoice, payload)

        if subtotal_check and certification.totals is not None:
            expected = invoice.totals
            received = {key: certification.totals.get(key) for key in ("ht", "vat", "ttc")}
            if received != expected:
                logger.error(
                    "Totali fiscali non coerenti per %s: registro=%s dispositivo=%s",
                    invoice_id, expected, received,
                )
                raise FiscalIntegrityError(
                    "I totali certificati dal dispositivo non coincidono con il documento",
                    extra={"expected": expected, "received": received},
                )

        invoice = await self._load_invoice(db, invoice_id, for_update=True)
        if invoice.fiscal_signature is not None:
            # Timbrato da una richiesta concorrente durante la certificazione
            await db.commit()
            logger.info("Documento %s timbrato nel frattempo, certificazione scartata", invoice_id)
            return invoice

        invoice.fiscal_source = certification.source
        invoice.fiscal_device_reference = certification.device_reference
        invoice.fiscal_signature = certification.signature
        invoice.fiscal_counters = certification.counters
        invoice.fiscal_certified_at = certification.certified_at
        invoice.fiscal_verification_payload = certification.verification_payload

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore salvataggio timbro fiscale per %s: %s", invoice_id, e)
            raise ConflictError("Impossibile registrare il timbro fiscale") from e

        logger.info(
            "Timbro fiscale registrato per %s (%s) da %s",
            invoice.id, invoice.number, certification.source,
        )
        await self.audit.record(
            db,
            action="invoice.security.update",
            resource="Invoice",
            resource_id=invoice.id,
            before={"fiscalStamp": None},
            after={
                "fiscalStamp": FiscalStampRead.model_validate(invoice.fiscal_stamp).model_dump(
                    mode="json", by_alias=True
                )
            },
        )
        return invoice

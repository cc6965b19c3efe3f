"""
Service Layer per il Registro Fatture
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Definisce la logica di business dei documenti fiscali:
calcolo dei totali di riga, creazione delle bozze, conferma con
numerazione, ricerca e vista normalizzata.
"""

import datetime
import logging
import math
import uuid
from typing import Any, NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    NotFoundError,
)
from app.core.money import (
    ensure_storable,
    multiply_quantity_price,
    parse_amount,
    parse_quantity,
    split_from_inclusive,
    vat_from_base,
)
from app.core.tax_rules import (
    DocumentType,
    ItemKind,
    TaxGroup,
    is_credit_document,
    is_group_allowed_for_kind,
    rate_for_group,
    required_client_fields,
    requires_origin_reference,
)
from app.core.tenancy import require_context
from app.models import Invoice, InvoiceLine
from app.models.invoice import InvoiceStatus, PricingMode
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceLineCreate,
    InvoiceList,
    InvoiceRead,
    NormalizedInvoice,
)
from app.services.audit_service import AuditService, stable_hash
from app.services.fx_service import ExchangeRateProvider, ExchangeRateService
from app.services.idempotency_service import IdempotencyCache
from app.services.numbering_service import NumberingConfig, NumberingService
from app.services.settings_service import TenantSettingsService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Campi della vista normalizzata, nell'ordine del payload
NORMALIZED_FIELDS = (
    "id",
    "number",
    "status",
    "type",
    "pricingMode",
    "client",
    "totals",
    "equivalentCurrency",
    "createdAt",
    "updatedAt",
)


class LineTotals(NamedTuple):
    """Valori calcolati di una riga, tutti interi scalati."""

    quantity: int
    unit_price: int
    total_ht: int
    total_vat: int
    total_ttc: int


def compute_line_totals(pricing_mode: PricingMode, line: InvoiceLineCreate) -> LineTotals:
    """
    Calcola i totali di una riga secondo la modalità di prezzo.

    - HT: imponibile = quantità x prezzo, IVA calcolata sull'imponibile
    - TTC: totale = quantità x prezzo, scomposto in imponibile e IVA

    Args:
        pricing_mode: HT o TTC
        line: Riga da calcolare

    Returns:
        LineTotals: Quantità, prezzo e totali in interi scalati

    Raises:
        BusinessValidationError: Gruppo fiscale non ammesso per la natura
            dell'articolo o valori decimali non validi
            o fuori dai limiti
    """
    kind = ItemKind(line.kind)
    group = TaxGroup(line.tax_group)
    if not is_group_allowed_for_kind(kind, group):
        raise BusinessValidationError(
            f"Gruppo fiscale {group.value} non ammesso per articoli di tipo {kind.value}",
            error_code="TAX_GROUP_NOT_ALLOWED",
            extra={"kind": kind.value, "tax_group": group.value},
        )

    rate = rate_for_group(group)
    quantity = parse_quantity(line.quantity)
    unit_price = parse_amount(line.unit_price)

    if PricingMode(pricing_mode) == PricingMode.HT:
        total_ht = multiply_quantity_price(quantity, unit_price)
        total_vat = vat_from_base(total_ht, rate)
        total_ttc = total_ht + total_vat
    else:
        total_ttc = multiply_quantity_price(quantity, unit_price)
        total_ht, total_vat = split_from_inclusive(total_ttc, rate)

    for value in (total_ht, total_vat, total_ttc):
        ensure_storable(value)

    return LineTotals(quantity, unit_price, total_ht, total_vat, total_ttc)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def normalized_payload(invoice: Invoice) -> dict[str, Any]:
    """Campi fiscalmente rilevanti del documento, in forma JSON."""
    serialized = InvoiceService.serialize_invoice(invoice)
    return {field: serialized.get(field) for field in NORMALIZED_FIELDS}


class InvoiceService:
    """
    Service per la gestione dei documenti fiscali.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione bozza con totali esatti
    - Conferma con regole DGI, cambio equivalente e numerazione
    - Conferma idempotente per chiave
    - Ricerca per id, numero e lista paginata
    - Vista normalizzata con hash
    """

    def __init__(
        self,
        numbering: Optional[NumberingService] = None,
        audit: Optional[AuditService] = None,
        fx_provider: Optional[ExchangeRateProvider] = None,
        settings_service: Optional[TenantSettingsService] = None,
        cache: Optional[IdempotencyCache] = None,
    ) -> None:
        self.audit = audit or AuditService()
        self.numbering = numbering or NumberingService()
        self.fx_provider = fx_provider or ExchangeRateService(self.audit)
        self.settings_service = settings_service or TenantSettingsService(self.audit)
        self.cache = cache or IdempotencyCache()

    # ------------------------------------------------------------
    # Serializzazione
    # ------------------------------------------------------------
    @staticmethod
    def serialize_invoice(invoice: Invoice) -> dict[str, Any]:
        """Forma JSON del documento, identica a quella restituita dall'API."""
        return InvoiceRead.model_validate(invoice).model_dump(mode="json", by_alias=True)

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------
    async def create_draft(self, db: AsyncSession, data: InvoiceCreate) -> Invoice:
        """
        Crea un documento in bozza.

        Tutte le righe vengono validate e calcolate prima di scrivere:
        un errore su una riga non lascia nulla di parziale.

        Args:
            db: Sessione database async con contesto tenant
            data: Tipo, modalità di prezzo, cliente, righe e dati nota di credito

        Returns:
            Invoice: Documento in stato DRAFT

        Raises:
            BusinessValidationError: Nessuna riga o riga non valida
            ConflictError: Errore di integrità in salvataggio
        """
        require_context(db).require_tenant()

        if not data.lines:
            raise BusinessValidationError(
                "Il documento richiede almeno una riga",
                error_code="INVOICE_LINES_REQUIRED",
            )

        pricing_mode = data.pricing_mode
        if pricing_mode is None:
            tenant_settings = await self.settings_service.get(db)
            pricing_mode = PricingMode(tenant_settings.default_pricing_mode)

        computed: list[tuple[InvoiceLineCreate, LineTotals]] = []
        for index, line in enumerate(data.lines, start=1):
            try:
                computed.append((line, compute_line_totals(pricing_mode, line)))
            except BusinessValidationError as e:
                e.extra = {**(e.extra or {}), "line": index}
                raise

        lines = [
            InvoiceLine(
                line_number=index,
                item_reference=line.item_reference,
                kind=ItemKind(line.kind).value,
                tax_group=TaxGroup(line.tax_group).value,
                label=line.label,
                quantity=totals.quantity,
                unit_price=totals.unit_price,
                total_ht=totals.total_ht,
                total_vat=totals.total_vat,
                total_ttc=totals.total_ttc,
            )
            for index, (line, totals) in enumerate(computed, start=1)
        ]

        credit_note = data.credit_note
        invoice = Invoice(
            status=InvoiceStatus.DRAFT.value,
            pricing_mode=PricingMode(pricing_mode).value,
            document_type=DocumentType(data.document_type).value,
            number=None,
            client_type=data.client.type.value,
            client_denomination=data.client.denomination,
            client_name=data.client.name,
            client_nif=data.client.nif,
            client_ref_exo=data.client.ref_exo,
            total_ht=ensure_storable(sum(totals.total_ht for _, totals in computed)),
            total_vat=ensure_storable(sum(totals.total_vat for _, totals in computed)),
            total_ttc=ensure_storable(sum(totals.total_ttc for _, totals in computed)),
            equivalent_currency_code=None,
            equivalent_currency_rate=None,
            equivalent_currency_captured_at=None,
            equivalent_currency_provider=None,
            credit_note_nature=credit_note.nature.value if credit_note and credit_note.nature else None,
            credit_note_origin_reference=credit_note.origin_reference if credit_note else None,
            fiscal_source=None,
            fiscal_device_reference=None,
            fiscal_signature=None,
            fiscal_counters=None,
            fiscal_certified_at=None,
            fiscal_verification_payload=None,
            confirmed_at=None,
            lines=lines,
        )
        db.add(invoice)

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore creazione bozza: %s", e)
            raise ConflictError("Impossibile creare il documento") from e

        logger.info(
            "Bozza %s creata: tipo=%s righe=%s totale=%s",
            invoice.id, invoice.document_type, len(lines), invoice.total_ttc,
        )
        await self.audit.record(
            db,
            action="invoice.createDraft",
            resource="Invoice",
            resource_id=invoice.id,
            after=self.serialize_invoice(invoice),
        )
        return invoice

    # ------------------------------------------------------------
    # Conferma
    # ------------------------------------------------------------
    def _enforce_confirm_rules(self, invoice: Invoice) -> None:
        """
        Regole DGI verificate alla conferma.

        Raises:
            BusinessValidationError: Dati cliente obbligatori mancanti o
                nota di credito senza natura / riferimento origine
        """
        for field in required_client_fields(invoice.client_type):
            if _blank(getattr(invoice, f"client_{field}")):
                raise BusinessValidationError(
                    f"Cliente di tipo {invoice.client_type} senza campo obbligatorio '{field}'",
                    error_code="CLIENT_FIELD_REQUIRED",
                    extra={"client_type": invoice.client_type, "field": field},
                )

        if is_credit_document(invoice.document_type):
            if invoice.credit_note_nature is None:
                raise BusinessValidationError(
                    f"Il documento {invoice.document_type} richiede la natura della nota di credito",
                    error_code="CREDIT_NOTE_NATURE_REQUIRED",
                )
            if requires_origin_reference(invoice.credit_note_nature) and _blank(
                invoice.credit_note_origin_reference
            ):
                raise BusinessValidationError(
                    f"La natura {invoice.credit_note_nature} richiede il riferimento al documento di origine",
                    error_code="CREDIT_NOTE_ORIGIN_REQUIRED",
                    extra={"nature": invoice.credit_note_nature},
                )

    async def confirm(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        equivalent_currency_code: Optional[str] = None,
    ) -> Invoice:
        """
        Conferma un documento in bozza assegnandogli il numero fiscale.

        Steps (in una sola transazione):
        1. Carica il documento con lock di riga
        2. Se già confermato lo restituisce invariato (nessun nuovo numero)
        3. Verifica le regole DGI
        4. Congela il cambio equivalente, se richiesto
        5. Alloca il numero e passa a CONFIRMED

        Args:
            db: Sessione database async con contesto tenant
            invoice_id: UUID del documento
            equivalent_currency_code: Valuta per l'importo equivalente (opzionale)

        Returns:
            Invoice: Documento confermato

        Raises:
            NotFoundError: Documento inesistente nel tenant
            BusinessValidationError: Regole DGI violate
            ConflictError: Numerazione esaurita o conflitto di integrità
        """
        tenant_settings = await self.settings_service.get(db)
        numbering_config = NumberingConfig.from_tenant_settings(tenant_settings)

        result = await db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            await db.rollback()
            raise NotFoundError(f"Documento {invoice_id} non trovato")

        if invoice.status == InvoiceStatus.CONFIRMED.value:
            await db.commit()
            logger.info("Conferma ripetuta per %s (%s)", invoice.id, invoice.number)
            await self.audit.record(
                db,
                action="invoice.confirm.idempotent",
                resource="Invoice",
                resource_id=invoice.id,
                after=self.serialize_invoice(invoice),
            )
            return invoice

        before = self.serialize_invoice(invoice)

        try:
            self._enforce_confirm_rules(invoice)

            if equivalent_currency_code:
                snapshot = await self.fx_provider.latest_rate(db, equivalent_currency_code)
                invoice.equivalent_currency_code = snapshot.code
                invoice.equivalent_currency_rate = snapshot.rate
                invoice.equivalent_currency_captured_at = snapshot.captured_at
                invoice.equivalent_currency_provider = snapshot.provider

            invoice.number = await self.numbering.next_number(
                db,
                DocumentType(invoice.document_type),
                config=numbering_config,
            )
            invoice.status = InvoiceStatus.CONFIRMED.value
            invoice.confirmed_at = datetime.datetime.now(datetime.timezone.utc)

            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Conflitto in conferma del documento %s: %s", invoice_id, e)
            raise ConflictError(
                "Conflitto di integrità durante la conferma",
                extra={"invoice_id": str(invoice_id)},
            ) from e
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Documento %s confermato con numero %s (request_id=%s)",
            invoice.id, invoice.number, require_context(db).request_id,
        )
        await self.audit.record(
            db,
            action="invoice.confirm",
            resource="Invoice",
            resource_id=invoice.id,
            before=before,
            after=self.serialize_invoice(invoice),
        )
        return invoice

    async def confirm_idempotent(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        idempotency_key: Optional[str],
        equivalent_currency_code: Optional[str] = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        Conferma con chiave di idempotenza.

        Entro la validità configurata dal tenant, la stessa chiave
        restituisce la stessa risposta senza rieseguire la conferma.

        Returns:
            tuple: (documento serializzato, True se risposta memorizzata)
        """
        if not idempotency_key:
            invoice = await self.confirm(db, invoice_id, equivalent_currency_code)
            return self.serialize_invoice(invoice), False

        tenant_id = require_context(db).require_tenant()
        tenant_settings = await self.settings_service.get(db)
        ttl = datetime.timedelta(hours=tenant_settings.idempotency_ttl_hours)
        key = IdempotencyCache.make_key(tenant_id, invoice_id, idempotency_key)

        async def _confirm() -> dict[str, Any]:
            invoice = await self.confirm(db, invoice_id, equivalent_currency_code)
            return self.serialize_invoice(invoice)

        response, replayed = await self.cache.get_or_compute(key, ttl, _confirm)
        if replayed:
            logger.info("Risposta di conferma memorizzata restituita per %s", invoice_id)
        return response, replayed

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------
    async def get_by_id(self, db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
        """
        Recupera un documento del tenant corrente.

        Raises:
            NotFoundError: Se il documento non esiste (o è di un altro tenant)
        """
        result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundError(f"Documento {invoice_id} non trovato")
        return invoice

    async def get_by_number(self, db: AsyncSession, number: str) -> Invoice:
        result = await db.execute(select(Invoice).where(Invoice.number == number))
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundError(f"Documento numero {number} non trovato")
        return invoice

    async def get_all(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status_filter: Optional[InvoiceStatus] = None,
        document_type: Optional[DocumentType] = None,
    ) -> InvoiceList:
        """
        Lista paginata dei documenti del tenant, dal più recente.

        Args:
            db: Sessione database async
            page: Numero pagina (1-based)
            limit: Elementi per pagina
            status_filter: Filtro per stato
            document_type: Filtro per tipo documento

        Returns:
            InvoiceList: Documenti e metadati di paginazione
        """
        conditions = []
        if status_filter is not None:
            conditions.append(Invoice.status == InvoiceStatus(status_filter).value)
        if document_type is not None:
            conditions.append(Invoice.document_type == DocumentType(document_type).value)

        count_result = await db.execute(
            select(func.count()).select_from(Invoice).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await db.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc(), Invoice.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        invoices = result.scalars().all()

        return InvoiceList(
            items=[InvoiceRead.model_validate(invoice) for invoice in invoices],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total > 0 else 0,
        )

    async def normalized(self, db: AsyncSession, invoice_id: uuid.UUID) -> NormalizedInvoice:
        """
        Vista canonica del documento e relativo hash SHA-256.

        Il payload contiene solo i campi fiscalmente rilevanti; l'hash
        non dipende dall'ordine delle chiavi.
        """
        invoice = await self.get_by_id(db, invoice_id)
        payload = normalized_payload(invoice)
        return NormalizedInvoice(payload=payload, hash=stable_hash(payload))

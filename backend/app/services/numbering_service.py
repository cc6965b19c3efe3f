"""
Service Layer per la Numerazione Fiscale
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Assegna numeri progressivi senza buchi e senza duplicati per
(tenant, tipo documento, anno). Nessun lock applicativo: la
serializzazione avviene sulla riga del contatore tramite upsert atomico
INSERT ... ON CONFLICT DO UPDATE ... RETURNING.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import dialect_insert
from app.core.exceptions import ConflictError
from app.core.tax_rules import DocumentType
from app.core.tenancy import require_context
from app.models import InvoiceCounter

# Logger per questo modulo
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumberingConfig:
    """
    Parametri di numerazione di un tenant.

    Attributes:
        prefix: Prefisso del tenant, anteposto al codice del tipo documento
        yearly_reset: Progressivo distinto per anno solare
        width: Cifre del progressivo
    """

    prefix: Optional[str] = None
    yearly_reset: bool = True
    width: int = 6

    @classmethod
    def from_tenant_settings(cls, tenant_settings) -> "NumberingConfig":
        return cls(
            prefix=tenant_settings.numbering_prefix,
            yearly_reset=tenant_settings.numbering_yearly_reset,
            width=tenant_settings.numbering_width,
        )


def format_invoice_number(
    prefix: str,
    seq: int,
    width: int,
    year: Optional[int] = None,
) -> str:
    """
    Compone il numero fiscale.

    Example:
        >>> format_invoice_number("FV", 42, 6, 2025)
        'FV2025-000042'
        >>> format_invoice_number("FV", 42, 6)
        'FV000042'
    """
    padded = f"{seq:0{width}d}"
    if year is None:
        return f"{prefix}{padded}"
    return f"{prefix}{year}-{padded}"


class NumberingService:
    """
    Service per l'allocazione dei numeri fiscali.

    L'incremento avviene nella transazione del chiamante: se la conferma
    fallisce dopo l'allocazione, il rollback annulla anche l'incremento.
    """

    def __init__(self, max_retries: Optional[int] = None) -> None:
        self.max_retries = max_retries or settings.counter_max_retries

    async def next_number(
        self,
        db: AsyncSession,
        document_type: DocumentType,
        *,
        config: NumberingConfig,
        issued_on: Optional[datetime.date] = None,
    ) -> str:
        """
        Alloca il prossimo numero per il tipo documento.

        Args:
            db: Sessione database async (transazione del chiamante)
            document_type: Tipo documento da numerare
            config: Prefisso, azzeramento annuale e larghezza
            issued_on: Data di riferimento per l'anno (default: oggi UTC)

        Returns:
            str: Numero formattato (es. FV2025-000001)

        Raises:
            ConflictError: Progressivo esaurito o collisioni oltre i tentativi
        """
        tenant_id = require_context(db).require_tenant()
        document_type = DocumentType(document_type)
        issued_on = issued_on or datetime.datetime.now(datetime.timezone.utc).date()
        year = issued_on.year if config.yearly_reset else 0

        seq = await self._increment(db, tenant_id, document_type, year)

        if seq >= 10**config.width:
            logger.error(
                "Progressivo esaurito: tenant=%s tipo=%s anno=%s seq=%s",
                tenant_id, document_type.value, year, seq,
            )
            raise ConflictError(
                f"Numerazione {document_type.value} esaurita per l'anno {year or 'corrente'}",
                error_code="NUMBERING_EXHAUSTED",
            )

        # Il codice del tipo resta nel numero: i progressivi sono distinti per tipo
        prefix = f"{config.prefix or ''}{document_type.value}"
        number = format_invoice_number(
            prefix,
            seq,
            config.width,
            year if config.yearly_reset else None,
        )
        logger.debug("Numero allocato %s per tenant %s", number, tenant_id)
        return number

    async def _increment(
        self,
        db: AsyncSession,
        tenant_id,
        document_type: DocumentType,
        year: int,
    ) -> int:
        """Upsert del contatore con tentativi limitati in caso di collisione."""
        table = InvoiceCounter.__table__
        for attempt in range(1, self.max_retries + 1):
            stmt = dialect_insert(db, table).values(
                tenant_id=tenant_id,
                document_type=document_type.value,
                year=year,
                seq=1,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["tenant_id", "document_type", "year"],
                set_={"seq": table.c.seq + 1},
            ).returning(table.c.seq)

            try:
                async with db.begin_nested():
                    result = await db.execute(stmt)
                    return result.scalar_one()
            except IntegrityError as e:
                logger.warning(
                    "Collisione sul contatore %s/%s (tentativo %s/%s): %s",
                    document_type.value, year, attempt, self.max_retries, e,
                )

        raise ConflictError(
            "Impossibile allocare il numero fiscale, riprovare",
            error_code="NUMBERING_CONFLICT",
        )

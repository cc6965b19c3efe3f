"""
Service Layer per i Tassi di Cambio
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Registro dei tassi manuali per tenant. Fornisce anche l'istantanea di
cambio usata in conferma per l'importo equivalente.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import BusinessValidationError, ConflictError, NotFoundError
from app.core.money import parse_rate
from app.models import ExchangeRate
from app.schemas.exchange_rate import ExchangeRateCreate, ExchangeRateRead
from app.services.audit_service import AuditService

# Logger per questo modulo
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateSnapshot:
    """Tasso congelato sul documento alla conferma."""

    code: str
    rate: int
    captured_at: datetime.datetime
    provider: str


class ExchangeRateProvider(Protocol):
    """Sorgente dei tassi di cambio consultata in conferma."""

    async def latest_rate(self, db: AsyncSession, quote: str) -> RateSnapshot:
        ...


class ExchangeRateService:
    """
    Service per la gestione dei tassi di cambio.

    Implementa:
    - Inserimento manuale con validazione delle valute
    - Elenco per valuta, dal più recente
    - Tasso più recente (provider per la conferma)
    """

    def __init__(self, audit: AuditService, base_currency: Optional[str] = None) -> None:
        self.audit = audit
        self.base_currency = base_currency or settings.base_currency

    def _normalize_quote(self, quote: str) -> str:
        quote = quote.strip().upper()
        if len(quote) != 3 or not quote.isalpha():
            raise BusinessValidationError(
                f"Codice valuta non valido: '{quote}'",
                extra={"field": "quote"},
            )
        if quote == self.base_currency:
            raise BusinessValidationError(
                f"La valuta quotata non può essere la valuta di base {self.base_currency}",
                extra={"field": "quote"},
            )
        return quote

    async def create(self, db: AsyncSession, data: ExchangeRateCreate) -> ExchangeRate:
        """
        Registra un nuovo tasso.

        Args:
            db: Sessione database async
            data: Valuta quotata, tasso e inizio validità

        Returns:
            ExchangeRate: Tasso registrato

        Raises:
            BusinessValidationError: Valuta di base diversa da quella configurata,
                valuta quotata uguale alla base o tasso non positivo
        """
        if data.base is not None and data.base != self.base_currency:
            raise BusinessValidationError(
                f"La valuta di base deve essere {self.base_currency}",
                extra={"field": "base"},
            )
        quote = self._normalize_quote(data.quote)
        rate = parse_rate(data.rate)
        if rate <= 0:
            raise BusinessValidationError(
                "Il tasso di cambio deve essere positivo",
                extra={"field": "rate"},
            )

        fx_rate = ExchangeRate(
            base=self.base_currency,
            quote=quote,
            rate=rate,
            provider="manual",
            valid_from=data.valid_from,
        )
        db.add(fx_rate)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore registrazione tasso %s/%s: %s", self.base_currency, quote, e)
            raise ConflictError("Impossibile registrare il tasso di cambio") from e

        logger.info("Tasso registrato %s/%s = %s", fx_rate.base, fx_rate.quote, fx_rate.rate_display)
        await self.audit.record(
            db,
            action="fx.rate.create",
            resource="ExchangeRate",
            resource_id=fx_rate.id,
            after=ExchangeRateRead.model_validate(fx_rate).model_dump(mode="json"),
        )
        return fx_rate

    async def get_all(self, db: AsyncSession, quote: Optional[str] = None) -> list[ExchangeRate]:
        stmt = select(ExchangeRate).order_by(
            ExchangeRate.valid_from.desc(),
            ExchangeRate.created_at.desc(),
        )
        if quote:
            stmt = stmt.where(ExchangeRate.quote == quote.strip().upper())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def latest(self, db: AsyncSession, quote: str) -> ExchangeRate:
        """
        Tasso più recente per la valuta quotata.

        Raises:
            NotFoundError: Nessun tasso registrato per la valuta
        """
        quote = self._normalize_quote(quote)
        result = await db.execute(
            select(ExchangeRate)
            .where(ExchangeRate.quote == quote)
            .order_by(ExchangeRate.valid_from.desc(), ExchangeRate.created_at.desc())
            .limit(1)
        )
        fx_rate = result.scalar_one_or_none()
        if fx_rate is None:
            raise NotFoundError(
                f"Nessun tasso di cambio per {quote}",
                extra={"quote": quote},
            )
        return fx_rate

    async def latest_rate(self, db: AsyncSession, quote: str) -> RateSnapshot:
        fx_rate = await self.latest(db, quote)
        return RateSnapshot(
            code=fx_rate.quote,
            rate=fx_rate.rate,
            captured_at=fx_rate.valid_from,
            provider=fx_rate.provider,
        )

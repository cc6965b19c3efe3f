"""
Modello SQLAlchemy per i Tassi di Cambio
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

from __future__ import annotations

import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.money import format_rate
from app.models import Base
from app.models.mixins import TenantScopedMixin, TimestampMixin, UUIDMixin


class ExchangeRate(Base, UUIDMixin, TimestampMixin, TenantScopedMixin):
    """
    Tasso di cambio inserito manualmente da un tenant.

    Esprime quante unità della valuta di base valgono una unità della
    valuta quotata, a partire da valid_from.

    Attributes:
        base: Valuta di base (es. CDF)
        quote: Valuta quotata (es. USD)
        rate: Tasso in milionesimi
        provider: Origine del tasso (manual)
        valid_from: Inizio validità
    """

    __tablename__ = "exchange_rates"

    base: Mapped[str] = mapped_column(String(3), nullable=False)
    quote: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[int] = mapped_column(BigInteger, nullable=False, doc="Tasso in milionesimi")
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    valid_from: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("rate > 0", name="ck_exchange_rates_rate_positive"),
        CheckConstraint("base <> quote", name="ck_exchange_rates_distinct_currencies"),
        Index("ix_exchange_rates_tenant_quote_valid", "tenant_id", "quote", "valid_from"),
    )

    def __repr__(self) -> str:
        return f"<ExchangeRate({self.base}/{self.quote}={self.rate_display} da {self.valid_from})>"

    @property
    def rate_display(self) -> str:
        return format_rate(self.rate)

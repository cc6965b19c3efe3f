"""
Modello SQLAlchemy per le Impostazioni del Registro per tenant
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import TenantScopedMixin, TimestampMixin, UUIDMixin


class TenantSettings(Base, UUIDMixin, TimestampMixin, TenantScopedMixin):
    """
    Impostazioni di numerazione, idempotenza e integrazione fiscale.

    Una sola riga per tenant, creata con i default applicativi al
    primo accesso.

    Attributes:
        numbering_prefix: Prefisso anteposto al codice tipo documento (opzionale)
        numbering_yearly_reset: Azzeramento annuale del progressivo
        numbering_width: Cifre del progressivo
        idempotency_ttl_hours: Validità delle risposte di conferma memorizzate
        fiscal_subtotal_check: Verifica dei totali restituiti dal dispositivo
        default_pricing_mode: Modalità prezzo proposta per le nuove bozze
    """

    __tablename__ = "tenant_settings"

    numbering_prefix: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    numbering_yearly_reset: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    numbering_width: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    idempotency_ttl_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    fiscal_subtotal_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_pricing_mode: Mapped[str] = mapped_column(String(8), nullable=False, default="TTC")

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_tenant_settings_tenant"),
        CheckConstraint(
            "numbering_width BETWEEN 1 AND 12",
            name="ck_tenant_settings_width",
        ),
        CheckConstraint(
            "idempotency_ttl_hours BETWEEN 1 AND 168",
            name="ck_tenant_settings_ttl",
        ),
    )

    def __repr__(self) -> str:
        return f"<TenantSettings(tenant_id={self.tenant_id}, prefix='{self.numbering_prefix}')>"

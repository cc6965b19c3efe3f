"""
Modelli SQLAlchemy per il Registro Fatture
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Contiene:
- Invoice: Documento fiscale (fattura, acconto, nota di credito)
- InvoiceLine: Righe del documento con totali calcolati
- InvoiceCounter: Contatore progressivo per tenant, tipo documento e anno

Gli importi sono interi scalati (centesimi, millesimi per le quantità,
milionesimi per i tassi di cambio): vedi app.core.money.
"""

from __future__ import annotations

import datetime
import uuid
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.money import format_amount, format_quantity, format_rate
from app.models import Base
from app.models.mixins import TenantScopedMixin, TimestampMixin, UUIDMixin


class InvoiceStatus(str, Enum):
    """Stati del documento: la sola transizione ammessa è DRAFT → CONFIRMED."""

    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"


class PricingMode(str, Enum):
    """Modalità di prezzo delle righe."""

    HT = "HT"    # prezzi al netto d'imposta
    TTC = "TTC"  # prezzi IVA inclusa


class Invoice(Base, UUIDMixin, TimestampMixin, TenantScopedMixin):
    """
    Documento fiscale di un tenant.

    Il numero viene assegnato solo alla conferma ed è unico per tenant.
    Un documento confermato non torna mai in bozza e i suoi totali
    restano quelli calcolati alla creazione.

    Attributes:
        id: UUID primary key
        tenant_id: Tenant proprietario
        status: DRAFT | CONFIRMED
        pricing_mode: HT | TTC
        document_type: FV, FT, FA, EV, ET, EA
        number: Numero fiscale (None finché in bozza)
        client_*: Istantanea dei dati cliente
        total_ht / total_vat / total_ttc: Totali in centesimi
        equivalent_currency_*: Istantanea del cambio alla conferma
        credit_note_*: Natura e riferimento origine (solo FA/EA)
        fiscal_*: Timbro del dispositivo fiscale
        confirmed_at: Data/ora di conferma

    Relationships:
        lines: Righe del documento, ordinate per numero riga
    """

    __tablename__ = "invoices"

    # ------------------------------------------------------------
    # Colonne Identificazione
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=InvoiceStatus.DRAFT.value,
        doc="Stato del documento",
    )

    pricing_mode: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        doc="Modalità di prezzo delle righe (HT | TTC)",
    )

    document_type: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
        doc="Tipo documento DGI",
    )

    number: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        doc="Numero fiscale assegnato alla conferma",
    )

    # ------------------------------------------------------------
    # Colonne Cliente (istantanea)
    # ------------------------------------------------------------
    client_type: Mapped[str] = mapped_column(String(4), nullable=False)
    client_denomination: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_nif: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    client_ref_exo: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Riferimento del provvedimento di esonero (clienti AO)",
    )

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    total_ht: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Totale imponibile in centesimi",
    )

    total_vat: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Totale imposta in centesimi",
    )

    total_ttc: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Totale documento in centesimi",
    )

    # ------------------------------------------------------------
    # Colonne Valuta equivalente
    # ------------------------------------------------------------
    equivalent_currency_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    equivalent_currency_rate: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        doc="Tasso di cambio in milionesimi",
    )
    equivalent_currency_captured_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    equivalent_currency_provider: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="Origine del tasso congelato",
    )

    # ------------------------------------------------------------
    # Colonne Nota di credito
    # ------------------------------------------------------------
    credit_note_nature: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    credit_note_origin_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Numero del documento rettificato",
    )

    # ------------------------------------------------------------
    # Colonne Timbro fiscale
    # ------------------------------------------------------------
    fiscal_source: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    fiscal_device_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    fiscal_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    fiscal_counters: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    fiscal_certified_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    fiscal_verification_payload: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        doc="Contenuto del QR code di verifica",
    )

    confirmed_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    lines: Mapped[List["InvoiceLine"]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.line_number",
        lazy="selectin",
    )

    # ------------------------------------------------------------
    # Constraints e Indici
    # ------------------------------------------------------------
    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),
        CheckConstraint(
            "total_ttc = total_ht + total_vat",
            name="ck_invoices_totals_sum",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'CONFIRMED')",
            name="ck_invoices_status",
        ),
        CheckConstraint(
            "status = 'DRAFT' OR number IS NOT NULL",
            name="ck_invoices_confirmed_has_number",
        ),
        Index("ix_invoices_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, number='{self.number}', "
            f"status='{self.status}', total_ttc={self.total_ttc})>"
        )

    # ------------------------------------------------------------
    # Viste composte (usate dagli schemi Pydantic)
    # ------------------------------------------------------------
    @property
    def is_confirmed(self) -> bool:
        return self.status == InvoiceStatus.CONFIRMED.value

    @property
    def client(self) -> dict[str, Any]:
        return {
            "type": self.client_type,
            "denomination": self.client_denomination,
            "name": self.client_name,
            "nif": self.client_nif,
            "ref_exo": self.client_ref_exo,
        }

    @property
    def totals(self) -> dict[str, str]:
        return {
            "ht": format_amount(self.total_ht),
            "vat": format_amount(self.total_vat),
            "ttc": format_amount(self.total_ttc),
        }

    @property
    def equivalent_currency(self) -> Optional[dict[str, Any]]:
        if self.equivalent_currency_code is None:
            return None
        return {
            "code": self.equivalent_currency_code,
            "rate": format_rate(self.equivalent_currency_rate),
            "captured_at": self.equivalent_currency_captured_at,
            "provider": self.equivalent_currency_provider,
        }

    @property
    def credit_note(self) -> Optional[dict[str, Any]]:
        if self.credit_note_nature is None and self.credit_note_origin_reference is None:
            return None
        return {
            "nature": self.credit_note_nature,
            "origin_reference": self.credit_note_origin_reference,
        }

    @property
    def fiscal_stamp(self) -> Optional[dict[str, Any]]:
        if self.fiscal_signature is None:
            return None
        return {
            "source": self.fiscal_source,
            "device_reference": self.fiscal_device_reference,
            "signature": self.fiscal_signature,
            "counters": self.fiscal_counters,
            "certified_at": self.fiscal_certified_at,
            "verification_payload": self.fiscal_verification_payload,
        }


class InvoiceLine(Base, UUIDMixin, TenantScopedMixin):
    """
    Riga di un documento fiscale.

    I totali sono calcolati alla creazione della bozza e non vengono
    più ricalcolati. Il tenant viene timbrato al flush insieme al
    documento padre.
    """

    __tablename__ = "invoice_lines"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    item_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Codice articolo di catalogo (opzionale)",
    )

    kind: Mapped[str] = mapped_column(String(4), nullable=False, doc="BIE | SER | TAX")
    tax_group: Mapped[str] = mapped_column(String(1), nullable=False, doc="Gruppo fiscale A-P")
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Quantità in millesimi",
    )

    unit_price: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Prezzo unitario in centesimi (HT o TTC secondo la modalità)",
    )

    total_ht: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_vat: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_ttc: Mapped[int] = mapped_column(BigInteger, nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
        CheckConstraint(
            "total_ttc = total_ht + total_vat",
            name="ck_invoice_lines_totals_sum",
        ),
    )

    def __repr__(self) -> str:
        return f"<InvoiceLine(invoice_id={self.invoice_id}, n={self.line_number}, group='{self.tax_group}')>"

    @property
    def quantity_display(self) -> str:
        return format_quantity(self.quantity)

    @property
    def unit_price_display(self) -> str:
        return format_amount(self.unit_price)


class InvoiceCounter(Base, UUIDMixin, TenantScopedMixin):
    """
    Contatore progressivo dei numeri fiscali.

    Una riga per (tenant, tipo documento, anno). Con azzeramento annuale
    disattivato l'anno vale 0. Il valore viene incrementato solo con
    upsert atomico dal NumberingService.
    """

    __tablename__ = "invoice_counters"

    document_type: Mapped[str] = mapped_column(String(4), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "document_type", "year",
            name="uq_invoice_counters_scope",
        ),
        CheckConstraint("seq >= 0", name="ck_invoice_counters_seq_positive"),
    )

    def __repr__(self) -> str:
        return f"<InvoiceCounter(type='{self.document_type}', year={self.year}, seq={self.seq})>"

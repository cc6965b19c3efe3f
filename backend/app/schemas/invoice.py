"""
Schemas Pydantic per il Registro Fatture
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Contiene:
- Schemas per InvoiceLine
- Schemas per Invoice (bozza, conferma, lettura, lista)
- Schema per la vista normalizzata

Importi, quantità e tassi viaggiano sempre come stringhe decimali.
In lettura gli interi scalati del database vengono riformattati.
"""

import datetime
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.money import (
    format_amount,
    format_quantity,
    parse_amount,
    parse_quantity,
)
from app.core.tax_rules import (
    ClientType,
    CreditNoteNature,
    DocumentType,
    ItemKind,
    TaxGroup,
)
from app.models.invoice import InvoiceStatus, PricingMode


# -------------------------------------------------------------------
# Schemas per InvoiceLine
# -------------------------------------------------------------------

class InvoiceLineCreate(BaseModel):
    """Schema per una riga della bozza."""

    item_reference: Optional[str] = Field(
        None,
        max_length=100,
        description="Codice articolo di catalogo",
    )
    kind: ItemKind = Field(..., description="Natura articolo (BIE, SER, TAX)")
    tax_group: TaxGroup = Field(..., description="Gruppo fiscale DGI")
    label: Optional[str] = Field(None, max_length=255, description="Descrizione")
    quantity: str = Field(..., description="Quantità decimale (es. '1.000')")
    unit_price: str = Field(
        ...,
        description="Prezzo unitario decimale, HT o TTC secondo la modalità",
    )

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: str) -> str:
        parse_quantity(v)
        return v.strip()

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: str) -> str:
        parse_amount(v)
        return v.strip()


class InvoiceLineRead(BaseModel):
    """Schema per la lettura di una riga."""

    id: uuid.UUID
    line_number: int = Field(..., serialization_alias="lineNumber")
    item_reference: Optional[str] = Field(None, serialization_alias="itemReference")
    kind: ItemKind
    tax_group: TaxGroup = Field(..., serialization_alias="taxGroup")
    label: Optional[str] = None
    quantity: str
    unit_price: str = Field(..., serialization_alias="unitPrice")
    total_ht: str = Field(..., serialization_alias="totalHt")
    total_vat: str = Field(..., serialization_alias="totalVat")
    total_ttc: str = Field(..., serialization_alias="totalTtc")

    model_config = ConfigDict(from_attributes=True)

    @field_validator("quantity", mode="before")
    @classmethod
    def format_scaled_quantity(cls, v: Any) -> Any:
        return format_quantity(v) if isinstance(v, int) else v

    @field_validator("unit_price", "total_ht", "total_vat", "total_ttc", mode="before")
    @classmethod
    def format_scaled_amount(cls, v: Any) -> Any:
        return format_amount(v) if isinstance(v, int) else v


# -------------------------------------------------------------------
# Schemas per sotto-oggetti del documento
# -------------------------------------------------------------------

class ClientSnapshot(BaseModel):
    """Dati cliente riportati sul documento."""

    type: ClientType = Field(..., description="Tipologia cliente")
    denomination: Optional[str] = Field(None, max_length=255, description="Ragione sociale (PM)")
    name: Optional[str] = Field(None, max_length=255, description="Nome")
    nif: Optional[str] = Field(None, max_length=50, description="Numero di identificazione fiscale")
    ref_exo: Optional[str] = Field(
        None,
        max_length=100,
        description="Riferimento esonero (AO)",
        serialization_alias="refExo",
    )

    model_config = ConfigDict(from_attributes=True)


class CreditNoteMeta(BaseModel):
    """Natura e origine di una nota di credito (FA / EA)."""

    nature: Optional[CreditNoteNature] = Field(None, description="Natura (COR, RAN, RAM, RRR)")
    origin_reference: Optional[str] = Field(
        None,
        max_length=100,
        description="Numero del documento rettificato",
        serialization_alias="originReference",
    )


class TotalsRead(BaseModel):
    ht: str
    vat: str
    ttc: str


class EquivalentCurrencyRead(BaseModel):
    code: str
    rate: str
    captured_at: datetime.datetime = Field(..., serialization_alias="capturedAt")
    provider: Optional[str] = None


class FiscalStampRead(BaseModel):
    """Timbro del dispositivo fiscale."""

    source: str
    device_reference: Optional[str] = Field(None, serialization_alias="deviceReference")
    signature: str
    counters: Optional[str] = None
    certified_at: Optional[datetime.datetime] = Field(None, serialization_alias="certifiedAt")
    verification_payload: Optional[str] = Field(None, serialization_alias="verificationPayload")


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    """
    Schema per la creazione di una bozza.

    La modalità di prezzo, se omessa, è quella predefinita del tenant.
    """

    document_type: DocumentType = Field(
        DocumentType.FV,
        description="Tipo documento DGI",
    )
    pricing_mode: Optional[PricingMode] = Field(
        None,
        description="Modalità di prezzo (HT | TTC)",
    )
    client: ClientSnapshot
    lines: list[InvoiceLineCreate] = Field(
        default_factory=list,
        description="Righe del documento (almeno una)",
    )
    credit_note: Optional[CreditNoteMeta] = Field(
        None,
        description="Obbligatorio per FA / EA",
    )


class InvoiceConfirm(BaseModel):
    """Schema opzionale per la conferma."""

    equivalent_currency_code: Optional[str] = Field(
        None,
        min_length=3,
        max_length=3,
        description="Valuta per l'importo equivalente (es. USD)",
    )


class InvoiceRead(BaseModel):
    """Schema per la lettura di un documento."""

    id: uuid.UUID
    tenant_id: uuid.UUID = Field(..., serialization_alias="tenantId")
    number: Optional[str] = None
    status: InvoiceStatus
    document_type: DocumentType = Field(..., serialization_alias="type")
    pricing_mode: PricingMode = Field(..., serialization_alias="pricingMode")
    client: ClientSnapshot
    totals: TotalsRead
    equivalent_currency: Optional[EquivalentCurrencyRead] = Field(
        None,
        serialization_alias="equivalentCurrency",
    )
    credit_note: Optional[CreditNoteMeta] = Field(None, serialization_alias="creditNote")
    fiscal_stamp: Optional[FiscalStampRead] = Field(None, serialization_alias="fiscalStamp")
    lines: list[InvoiceLineRead] = Field(default_factory=list)
    confirmed_at: Optional[datetime.datetime] = Field(None, serialization_alias="confirmedAt")
    created_at: datetime.datetime = Field(..., serialization_alias="createdAt")
    updated_at: datetime.datetime = Field(..., serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)


class InvoiceList(BaseModel):
    """Schema per la lista paginata dei documenti."""

    items: list[InvoiceRead] = Field(
        default_factory=list,
        description="Lista dei documenti",
    )
    total: int = Field(
        ...,
        description="Numero totale di documenti",
        serialization_alias="totalItems",
    )
    page: int = Field(
        ...,
        description="Pagina corrente",
        serialization_alias="currentPage",
    )
    limit: int = Field(
        ...,
        description="Elementi per pagina",
        serialization_alias="itemsPerPage",
    )
    total_pages: int = Field(
        ...,
        description="Numero totale di pagine",
        serialization_alias="totalPages",
    )

    model_config = ConfigDict(from_attributes=True)


class NormalizedInvoice(BaseModel):
    """Vista canonica del documento per le integrazioni fiscali."""

    payload: dict[str, Any] = Field(..., description="Documento in forma canonica")
    hash: str = Field(..., description="SHA-256 del payload serializzato con chiavi ordinate")

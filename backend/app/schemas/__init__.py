"""
Schemas Pydantic per il progetto Fiscal Ledger

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

from app.schemas.audit import AuditLogFilter, AuditLogList, AuditLogRead
from app.schemas.exchange_rate import ExchangeRateCreate, ExchangeRateRead
from app.schemas.invoice import (
    ClientSnapshot,
    CreditNoteMeta,
    InvoiceConfirm,
    InvoiceCreate,
    InvoiceLineCreate,
    InvoiceLineRead,
    InvoiceList,
    InvoiceRead,
    NormalizedInvoice,
)
from app.schemas.tenant_settings import TenantSettingsRead, TenantSettingsUpdate
from app.schemas.token import TokenPayload

__all__ = [
    "AuditLogFilter",
    "AuditLogList",
    "AuditLogRead",
    "ClientSnapshot",
    "CreditNoteMeta",
    "ExchangeRateCreate",
    "ExchangeRateRead",
    "InvoiceConfirm",
    "InvoiceCreate",
    "InvoiceLineCreate",
    "InvoiceLineRead",
    "InvoiceList",
    "InvoiceRead",
    "NormalizedInvoice",
    "TenantSettingsRead",
    "TenantSettingsUpdate",
    "TokenPayload",
]

"""
Modelli Database SQLAlchemy
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Import centralizzato di tutti i modelli.

Modelli:
- Invoice, InvoiceLine: Documenti fiscali e relative righe
- InvoiceCounter: Contatori di numerazione
- ExchangeRate: Tassi di cambio per tenant
- TenantSettings: Impostazioni del registro per tenant
- AuditLog: Registro di audit append-only
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.invoice import Invoice, InvoiceCounter, InvoiceLine, InvoiceStatus, PricingMode
from app.models.exchange_rate import ExchangeRate
from app.models.tenant_settings import TenantSettings
from app.models.audit import AuditLog

__all__ = [
    "Base",
    "Invoice",
    "InvoiceLine",
    "InvoiceCounter",
    "InvoiceStatus",
    "PricingMode",
    "ExchangeRate",
    "TenantSettings",
    "AuditLog",
]

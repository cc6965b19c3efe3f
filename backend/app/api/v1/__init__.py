"""
API v1 Routes
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import audit, exchange_rates, invoices, settings

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(exchange_rates.router)
api_v1_router.include_router(settings.router)
api_v1_router.include_router(audit.router)

# Esportazione
__all__ = ["api_v1_router"]

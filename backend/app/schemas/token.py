"""
Schemas Pydantic per l'identità JWT
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Il token è emesso da un servizio di identità esterno: il registro
lo verifica soltanto.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID dell'utente come stringa
        tenants: Tenant a cui l'utente appartiene
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token (access)
    """

    sub: str = Field(..., description="ID utente")
    tenants: list[str] = Field(default_factory=list, description="ID dei tenant dell'utente")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(..., description="Tipo di token")


__all__ = [
    "TokenPayload",
]

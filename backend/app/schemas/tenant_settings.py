"""
Schemas Pydantic per le Impostazioni del Registro
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.invoice import PricingMode


class TenantSettingsRead(BaseModel):
    """Schema per la lettura delle impostazioni di un tenant."""

    tenant_id: uuid.UUID = Field(..., serialization_alias="tenantId")
    numbering_prefix: Optional[str] = Field(None, serialization_alias="numberingPrefix")
    numbering_yearly_reset: bool = Field(..., serialization_alias="numberingYearlyReset")
    numbering_width: int = Field(..., serialization_alias="numberingWidth")
    idempotency_ttl_hours: int = Field(..., serialization_alias="idempotencyTtlHours")
    fiscal_subtotal_check: bool = Field(..., serialization_alias="fiscalSubtotalCheck")
    default_pricing_mode: PricingMode = Field(..., serialization_alias="defaultPricingMode")

    model_config = ConfigDict(from_attributes=True)


class TenantSettingsUpdate(BaseModel):
    """
    Schema per l'aggiornamento parziale delle impostazioni.

    Tutti i campi sono opzionali: solo quelli forniti vengono modificati.
    """

    numbering_prefix: Optional[str] = Field(None, max_length=10, description="Prefisso numerazione")
    numbering_yearly_reset: Optional[bool] = None
    numbering_width: Optional[int] = Field(None, ge=1, le=12)
    idempotency_ttl_hours: Optional[int] = Field(None, ge=1, le=168)
    fiscal_subtotal_check: Optional[bool] = None
    default_pricing_mode: Optional[PricingMode] = None

    @field_validator("numbering_prefix")
    @classmethod
    def validate_prefix(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if not v.isalnum():
            raise ValueError("Il prefisso può contenere solo lettere e cifre")
        return v

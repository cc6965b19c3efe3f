"""
Schemas Pydantic per i Tassi di Cambio
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

import datetime
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.money import format_rate, parse_rate


class ExchangeRateCreate(BaseModel):
    """
    Schema per l'inserimento manuale di un tasso.

    La valuta di base, se indicata, deve coincidere con quella configurata.
    """

    base: Optional[str] = Field(None, min_length=3, max_length=3, description="Valuta di base")
    quote: str = Field(..., min_length=3, max_length=3, description="Valuta quotata (es. USD)")
    rate: str = Field(..., description="Unità di valuta di base per una unità quotata")
    valid_from: datetime.datetime = Field(..., description="Inizio validità")

    @field_validator("base", "quote")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if not v.isalpha():
            raise ValueError("Il codice valuta deve contenere solo lettere")
        return v

    @field_validator("rate")
    @classmethod
    def validate_rate(cls, v: str) -> str:
        if parse_rate(v) <= 0:
            raise ValueError("Il tasso di cambio deve essere positivo")
        return v.strip()


class ExchangeRateRead(BaseModel):
    """Schema per la lettura di un tasso."""

    id: uuid.UUID
    base: str
    quote: str
    rate: str
    provider: str
    valid_from: datetime.datetime = Field(..., serialization_alias="validFrom")
    created_at: datetime.datetime = Field(..., serialization_alias="createdAt")

    model_config = ConfigDict(from_attributes=True)

    @field_validator("rate", mode="before")
    @classmethod
    def format_scaled_rate(cls, v: Any) -> Any:
        return format_rate(v) if isinstance(v, int) else v

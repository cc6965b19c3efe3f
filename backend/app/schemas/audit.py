"""
Schemas Pydantic per il Registro di Audit
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

import datetime
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogRead(BaseModel):
    """Schema per la lettura di una voce di audit."""

    id: uuid.UUID
    tenant_id: uuid.UUID = Field(..., serialization_alias="tenantId")
    actor_id: Optional[uuid.UUID] = Field(None, serialization_alias="actorId")
    action: str
    resource: str
    resource_id: Optional[str] = Field(None, serialization_alias="resourceId")
    before_hash: Optional[str] = Field(None, serialization_alias="beforeHash")
    after_hash: Optional[str] = Field(None, serialization_alias="afterHash")
    request_id: Optional[str] = Field(None, serialization_alias="requestId")
    details: Optional[dict[str, Any]] = None
    created_at: datetime.datetime = Field(..., serialization_alias="createdAt")

    model_config = ConfigDict(from_attributes=True)


class AuditLogFilter(BaseModel):
    """Filtri di ricerca nel registro."""

    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    date_from: Optional[datetime.datetime] = None
    date_to: Optional[datetime.datetime] = None


class AuditLogList(BaseModel):
    """Schema per la lista paginata delle voci di audit."""

    items: list[AuditLogRead] = Field(default_factory=list)
    total: int = Field(..., serialization_alias="totalItems")
    page: int = Field(..., serialization_alias="currentPage")
    limit: int = Field(..., serialization_alias="itemsPerPage")
    total_pages: int = Field(..., serialization_alias="totalPages")

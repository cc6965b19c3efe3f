"""
Router FastAPI per il Registro di Audit
Progetto: Fiscal Ledger (Registro Fatture Fiscali)
"""

import datetime
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status

from app.api.v1.invoices import invoice_service
from app.core.deps import DbSession
from app.schemas.audit import AuditLogFilter, AuditLogList

audit_service = invoice_service.audit

router = APIRouter(
    prefix="/audit-logs",
    tags=["Audit"],
)


@router.get(
    "/",
    name="audit_lista",
    summary="Registro di audit",
    description="Ricerca filtrata e paginata nel registro di audit del tenant.",
    response_model=AuditLogList,
    status_code=status.HTTP_200_OK,
)
async def query_audit_logs(
    db: DbSession,
    action: Optional[str] = Query(None, description="Azione (es. invoice.confirm)"),
    resource: Optional[str] = Query(None, description="Tipo di risorsa"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    actor_id: Optional[uuid.UUID] = Query(None, alias="actorId"),
    date_from: Optional[datetime.datetime] = Query(None, alias="from"),
    date_to: Optional[datetime.datetime] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> AuditLogList:
    filters = AuditLogFilter(
        action=action,
        resource=resource,
        resource_id=resource_id,
        actor_id=actor_id,
        date_from=date_from,
        date_to=date_to,
    )
    return await audit_service.query(db, filters, page=page, limit=limit)

"""
Modello SQLAlchemy per il Registro di Audit
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Il registro è append-only. Il vincolo è applicato su tre livelli:
- eventi mapper before_update / before_delete
- blocco degli UPDATE / DELETE ORM massivi
- trigger di database creati insieme alla tabella (PostgreSQL e SQLite)
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any, Optional

from sqlalchemy import DDL, JSON, DateTime, Index, String, Uuid, event
from sqlalchemy.orm import Mapped, ORMExecuteState, Session, mapped_column

from app.core.exceptions import ConflictError
from app.models import Base
from app.models.mixins import TenantScopedMixin, UUIDMixin

APPEND_ONLY_MESSAGE = "audit_logs is append-only"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AuditLog(Base, UUIDMixin, TenantScopedMixin):
    """
    Voce del registro di audit.

    Gli stati prima/dopo non vengono salvati: si conserva solo l'hash
    SHA-256 della loro serializzazione JSON canonica.

    Attributes:
        actor_id: Utente che ha eseguito l'azione
        action: Azione (es. invoice.confirm)
        resource: Tipo di risorsa (es. Invoice)
        resource_id: Identificativo della risorsa
        before_hash / after_hash: Hash degli stati
        request_id: Correlazione con la richiesta HTTP
        details: Metadati non sensibili
        created_at: Data/ora di registrazione
    """

    __tablename__ = "audit_logs"

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    before_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    after_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        doc="Data/ora di registrazione",
    )

    __table_args__ = (
        Index("ix_audit_logs_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', resource='{self.resource}', resource_id='{self.resource_id}')>"


# ------------------------------------------------------------
# Append-only: livello ORM
# ------------------------------------------------------------
@event.listens_for(AuditLog, "before_update")
def reject_audit_update(mapper, connection, target: AuditLog) -> None:
    raise ConflictError(APPEND_ONLY_MESSAGE, error_code="AUDIT_APPEND_ONLY")


@event.listens_for(AuditLog, "before_delete")
def reject_audit_delete(mapper, connection, target: AuditLog) -> None:
    raise ConflictError(APPEND_ONLY_MESSAGE, error_code="AUDIT_APPEND_ONLY")


@event.listens_for(Session, "do_orm_execute")
def reject_audit_bulk_write(orm_execute_state: ORMExecuteState) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and issubclass(mapper.class_, AuditLog):
        raise ConflictError(APPEND_ONLY_MESSAGE, error_code="AUDIT_APPEND_ONLY")


# ------------------------------------------------------------
# Append-only: livello database
# ------------------------------------------------------------
_audit_table = AuditLog.__table__

event.listen(
    _audit_table,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS audit_logs_no_update "
        "BEFORE UPDATE ON audit_logs "
        f"BEGIN SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}'); END"
    ).execute_if(dialect="sqlite"),
)

event.listen(
    _audit_table,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS audit_logs_no_delete "
        "BEFORE DELETE ON audit_logs "
        f"BEGIN SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}'); END"
    ).execute_if(dialect="sqlite"),
)

event.listen(
    _audit_table,
    "after_create",
    DDL(
        "CREATE OR REPLACE FUNCTION audit_logs_append_only() RETURNS trigger AS $$ "
        f"BEGIN RAISE EXCEPTION '{APPEND_ONLY_MESSAGE}'; END; "
        "$$ LANGUAGE plpgsql"
    ).execute_if(dialect="postgresql"),
)

event.listen(
    _audit_table,
    "after_create",
    DDL(
        "CREATE TRIGGER audit_logs_append_only "
        "BEFORE UPDATE OR DELETE ON audit_logs "
        "FOR EACH ROW EXECUTE FUNCTION audit_logs_append_only()"
    ).execute_if(dialect="postgresql"),
)

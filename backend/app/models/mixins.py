"""
Mixin SQLAlchemy per modelli
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli.
"""

import datetime
import uuid

from sqlalchemy import DateTime, Uuid
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    Aggiunge i campi:
    - created_at: data/ora di creazione record (impostato automaticamente)
    - updated_at: data/ora ultimo aggiornamento (aggiornato automaticamente)

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


class UUIDMixin:
    """
    Mixin per ID UUID generato lato applicazione.

    Usage:
        class MyModel(Base, UUIDMixin):
            __tablename__ = "my_table"
            ...
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="UUID primary key",
    )


class TenantScopedMixin:
    """
    Mixin per entità appartenenti ad un tenant.

    Le query, gli update, i delete e i flush su questi modelli vengono
    filtrati o timbrati con il tenant della sessione (vedi app.core.tenancy).

    Usage:
        class MyModel(Base, UUIDMixin, TenantScopedMixin):
            __tablename__ = "my_table"
            ...
    """

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
        doc="Tenant proprietario del record",
    )


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def update_timestamp(session: Session, flush_context, instances) -> None:
    """
    Aggiorna updated_at sugli oggetti modificati e valorizza i timestamp
    degli oggetti nuovi lato applicazione, così restano leggibili dopo
    il commit senza un ulteriore round-trip.
    """
    now = datetime.datetime.now(datetime.timezone.utc)

    for obj in session.dirty:
        if isinstance(obj, TimestampMixin):
            if session.is_modified(obj, include_collections=False):
                obj.updated_at = now

    for obj in session.new:
        if isinstance(obj, TimestampMixin):
            if obj.created_at is None:
                obj.created_at = now
            obj.updated_at = now

"""
Propagazione contesto tenant
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Il contesto di richiesta (request id, attore, tenant) viene creato una sola
volta al confine HTTP e legato alla sessione SQLAlchemy dell'unità di lavoro
tramite `session.info`. Nessuna variabile globale mutabile.

Gli event listener registrati qui applicano il filtro tenant a tutte le
entità con TenantScopedMixin:
- SELECT: criterio `tenant_id == contesto` (anche su alias e join)
- UPDATE / DELETE ORM: predicato esplicito sul tenant
- INSERT: tenant_id timbrato dal contesto
- flush di oggetti di un altro tenant: rifiutato

Il bypass è esplicito: opzione di esecuzione `skip_tenant=True` sul singolo
statement, oppure sessione legata con `skip_tenant=True` (percorsi di
manutenzione fidati).
"""

import logging
import uuid
from dataclasses import dataclass
from itertools import chain
from typing import Optional

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from app.core.exceptions import TenantContextError
from app.models.mixins import TenantScopedMixin

logger = logging.getLogger(__name__)

CONTEXT_KEY = "request_context"
SKIP_TENANT_OPTION = "skip_tenant"


@dataclass(frozen=True)
class RequestContext:
    """
    Contesto immutabile di una unità di lavoro.

    Attributes:
        request_id: Identificativo di correlazione della richiesta
        actor_id: Utente che esegue l'operazione (None per processi interni)
        tenant_id: Tenant su cui opera la richiesta
    """

    request_id: str
    actor_id: Optional[uuid.UUID] = None
    tenant_id: Optional[uuid.UUID] = None

    def require_tenant(self) -> uuid.UUID:
        if self.tenant_id is None:
            raise TenantContextError(
                "Operazione che richiede un tenant eseguita senza contesto tenant",
                extra={"request_id": self.request_id},
            )
        return self.tenant_id


def bind_context(session, ctx: RequestContext, *, skip_tenant: bool = False):
    """
    Lega il contesto alla sessione (sincrona o async).

    Returns:
        La stessa sessione, per comodità di concatenazione
    """
    session.info[CONTEXT_KEY] = ctx
    session.info[SKIP_TENANT_OPTION] = skip_tenant
    return session


def context_of(session) -> Optional[RequestContext]:
    """Contesto legato alla sessione, None se assente."""
    return session.info.get(CONTEXT_KEY)


def require_context(session) -> RequestContext:
    ctx = context_of(session)
    if ctx is None:
        raise TenantContextError("Sessione priva di contesto di richiesta")
    return ctx


def _session_skips_tenant(session) -> bool:
    return bool(session.info.get(SKIP_TENANT_OPTION, False))


def _tenant_of(session) -> uuid.UUID:
    return require_context(session).require_tenant()


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "do_orm_execute")
def scope_statement_to_tenant(orm_execute_state: ORMExecuteState) -> None:
    """Aggiunge il filtro tenant agli statement ORM su entità tenant-scoped."""
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return
    if orm_execute_state.execution_options.get(SKIP_TENANT_OPTION, False):
        return
    session = orm_execute_state.session
    if _session_skips_tenant(session):
        return

    ctx = context_of(session)
    tenant_id = ctx.tenant_id if ctx is not None else None
    if tenant_id is None:
        # Senza tenant sono ammessi solo statement su entità globali
        if any(
            issubclass(mapper.class_, TenantScopedMixin)
            for mapper in orm_execute_state.all_mappers
        ):
            _tenant_of(session)
        return

    # Il criterio si applica anche a subquery e select_from
    if orm_execute_state.is_select:
        orm_execute_state.statement = orm_execute_state.statement.options(
            with_loader_criteria(
                TenantScopedMixin,
                lambda cls: cls.tenant_id == tenant_id,
                include_aliases=True,
            )
        )
    elif orm_execute_state.is_update or orm_execute_state.is_delete:
        mapper = orm_execute_state.bind_mapper
        target = mapper.class_ if mapper is not None else None
        if target is not None and issubclass(target, TenantScopedMixin):
            orm_execute_state.statement = orm_execute_state.statement.where(
                target.tenant_id == tenant_id
            )


@event.listens_for(Session, "before_flush")
def stamp_tenant_on_flush(session: Session, flush_context, instances) -> None:
    """Timbra il tenant sugli oggetti nuovi e blocca scritture cross-tenant."""
    new_objects = [obj for obj in session.new if isinstance(obj, TenantScopedMixin)]
    changed_objects = [
        obj
        for obj in chain(session.dirty, session.deleted)
        if isinstance(obj, TenantScopedMixin)
    ]
    if not new_objects and not changed_objects:
        return

    skip = _session_skips_tenant(session)
    ctx = context_of(session)
    tenant_id = ctx.tenant_id if ctx is not None else None

    if tenant_id is None:
        if not skip:
            raise TenantContextError(
                "Scrittura di entità tenant-scoped senza contesto tenant"
            )
        for obj in new_objects:
            if obj.tenant_id is None:
                raise TenantContextError(
                    f"{type(obj).__name__} senza tenant_id in sessione di manutenzione"
                )
        return

    for obj in new_objects:
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id and not skip:
            logger.warning(
                "Inserimento cross-tenant bloccato: %s tenant=%s contesto=%s",
                type(obj).__name__,
                obj.tenant_id,
                tenant_id,
            )
            raise TenantContextError(
                "Impossibile creare un record per un altro tenant",
                extra={"resource": type(obj).__name__},
            )

    if skip:
        return

    for obj in changed_objects:
        if obj.tenant_id != tenant_id:
            logger.warning(
                "Scrittura cross-tenant bloccata: %s tenant=%s contesto=%s",
                type(obj).__name__,
                obj.tenant_id,
                tenant_id,
            )
            raise TenantContextError(
                "Impossibile modificare un record di un altro tenant",
                extra={"resource": type(obj).__name__},
            )

"""
Service Layer per il Registro di Audit
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Registra le mutazioni significative con l'hash SHA-256 degli stati
prima/dopo. La scrittura avviene in una sessione e transazione proprie:
un errore di audit viene loggato e non annulla mai l'operazione di business.
"""

import hashlib
import json
import logging
import math
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tenancy import context_of
from app.models import AuditLog
from app.schemas.audit import AuditLogFilter, AuditLogList, AuditLogRead

# Logger per questo modulo
logger = logging.getLogger(__name__)


def stable_json(value: Any) -> str:
    """Serializzazione JSON canonica: chiavi ordinate a ogni livello."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def stable_hash(value: Any) -> Optional[str]:
    """
    SHA-256 esadecimale della forma canonica di un valore.

    L'ordine delle chiavi non influisce sul risultato. None non ha hash;
    le stringhe vengono hashate così come sono.
    """
    if value is None:
        return None
    text = value if isinstance(value, str) else stable_json(value)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class AuditService:
    """
    Service per il registro di audit append-only.

    Implementa:
    - Registrazione best-effort delle azioni
    - Ricerca filtrata e paginata, limitata al tenant corrente
    """

    async def record(
        self,
        db: AsyncSession,
        action: str,
        resource: str,
        resource_id: Optional[Any] = None,
        before: Any = None,
        after: Any = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Registra una voce di audit.

        Usa una sessione separata che condivide il contesto di `db`: la
        transazione del chiamante deve essere già conclusa.

        Args:
            db: Sessione del chiamante (fornisce engine e contesto)
            action: Azione eseguita (es. invoice.confirm)
            resource: Tipo di risorsa
            resource_id: Identificativo della risorsa
            before: Stato precedente (solo l'hash viene salvato)
            after: Stato successivo (solo l'hash viene salvato)
            details: Metadati aggiuntivi non sensibili

        Returns:
            AuditLog registrato, oppure None se la scrittura è fallita
        """
        ctx = context_of(db)
        try:
            async with AsyncSession(
                bind=db.bind,
                expire_on_commit=False,
                info=dict(db.info),
            ) as audit_db:
                entry = AuditLog(
                    actor_id=ctx.actor_id if ctx else None,
                    action=action,
                    resource=resource,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    before_hash=stable_hash(before),
                    after_hash=stable_hash(after),
                    request_id=ctx.request_id if ctx else None,
                    details=details,
                )
                audit_db.add(entry)
                await audit_db.commit()
                return entry
        except Exception as exc:
            logger.warning(
                "Scrittura audit fallita: action=%s resource=%s resource_id=%s request_id=%s: %s",
                action,
                resource,
                resource_id,
                ctx.request_id if ctx else None,
                exc,
            )
            return None

    async def query(
        self,
        db: AsyncSession,
        filters: Optional[AuditLogFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AuditLogList:
        """
        Ricerca nel registro del tenant corrente, dal più recente.

        Args:
            db: Sessione database async
            filters: Filtri opzionali (azione, risorsa, attore, intervallo date)
            page: Numero pagina (1-based)
            limit: Elementi per pagina

        Returns:
            AuditLogList: Voci paginate
        """
        filters = filters or AuditLogFilter()
        conditions = []
        if filters.action:
            conditions.append(AuditLog.action == filters.action)
        if filters.resource:
            conditions.append(AuditLog.resource == filters.resource)
        if filters.resource_id:
            conditions.append(AuditLog.resource_id == filters.resource_id)
        if filters.actor_id:
            conditions.append(AuditLog.actor_id == filters.actor_id)
        if filters.date_from:
            conditions.append(AuditLog.created_at >= filters.date_from)
        if filters.date_to:
            conditions.append(AuditLog.created_at <= filters.date_to)

        count_result = await db.execute(
            select(func.count()).select_from(AuditLog).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        entries = result.scalars().all()

        return AuditLogList(
            items=[AuditLogRead.model_validate(entry) for entry in entries],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total > 0 else 0,
        )


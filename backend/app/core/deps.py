"""
Dependency Injection per identità, contesto tenant e sessione
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Il contesto di richiesta nasce qui, una sola volta per richiesta:
request id dal middleware, attore dal token, tenant dall'header
X-Tenant-Id (che deve essere tra i tenant dell'attore).
"""

import uuid
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal
from app.core.exceptions import AuthorizationError, TenantContextError
from app.core.security import decode_token
from app.core.tenancy import RequestContext, bind_context
from app.schemas.token import TokenPayload

# Estrae il token dall'header Authorization: Bearer <token>
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenPayload:
    """
    Dependency per ottenere l'identità corrente dal token JWT.

    Raises:
        HTTPException 401: Token mancante, invalido o non di accesso
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token di autenticazione non fornito",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(credentials.credentials)

    if token_data.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token non valido per questa operazione",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        uuid.UUID(token_data.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="ID utente invalido nel token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


async def get_request_context(
    request: Request,
    actor: Annotated[TokenPayload, Depends(get_current_actor)],
    x_tenant_id: Annotated[Optional[str], Header(alias="X-Tenant-Id")] = None,
) -> RequestContext:
    """
    Costruisce il contesto immutabile della richiesta.

    Raises:
        TenantContextError: Header X-Tenant-Id mancante o non valido
        AuthorizationError: L'attore non appartiene al tenant richiesto
    """
    request_id = get_request_id(request)

    if not x_tenant_id:
        raise TenantContextError(
            "Header X-Tenant-Id obbligatorio",
            extra={"request_id": request_id},
        )
    try:
        tenant_id = uuid.UUID(x_tenant_id)
    except ValueError:
        raise TenantContextError(
            f"X-Tenant-Id non valido: '{x_tenant_id}'",
            extra={"request_id": request_id},
        )

    if str(tenant_id) not in {str(t).lower() for t in actor.tenants}:
        raise AuthorizationError(
            "L'utente non appartiene al tenant richiesto",
            extra={"tenant_id": str(tenant_id)},
        )

    return RequestContext(
        request_id=request_id,
        actor_id=uuid.UUID(actor.sub),
        tenant_id=tenant_id,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory dell'applicazione; sostituibile nei test."""
    return AsyncSessionLocal


async def get_db(
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Sessione database legata al contesto della richiesta.

    Yields:
        AsyncSession: Sessione con filtro tenant attivo
    """
    async with session_factory() as session:
        bind_context(session, ctx)
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Type aliases per uso comune
CurrentActor = Annotated[TokenPayload, Depends(get_current_actor)]
CurrentContext = Annotated[RequestContext, Depends(get_request_context)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# Export
__all__ = [
    "bearer_scheme",
    "get_current_actor",
    "get_request_context",
    "get_session_factory",
    "get_db",
    "CurrentActor",
    "CurrentContext",
    "DbSession",
]

"""
Modulo di sicurezza per l'identità JWT
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

I token sono emessi da un servizio di identità che condivide la chiave
di firma. Il subject è l'ID dell'utente, il claim `tenants` elenca i
tenant a cui appartiene.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from app.core.config import settings
from app.schemas.token import TokenPayload


def create_access_token(
    actor_id: str,
    tenant_ids: Iterable[str],
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Crea un token di accesso JWT.

    Usato dagli strumenti di sviluppo e dai test: in produzione il token
    arriva dal servizio di identità.

    Args:
        actor_id: ID dell'utente
        tenant_ids: Tenant a cui l'utente appartiene
        expires_minutes: Validità in minuti (default da configurazione)

    Returns:
        Token JWT codificato
    """
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )

    payload = {
        "sub": str(actor_id),
        "tenants": [str(tenant_id) for tenant_id in tenant_ids],
        "exp": expire,
        "type": "access",
    }

    return jwt.encode(
        payload,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token invalido o scaduto: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalido: missing subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(
        sub=payload["sub"],
        tenants=payload.get("tenants") or [],
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        type=payload.get("type", "access"),
    )


# Export delle funzioni
__all__ = [
    "create_access_token",
    "decode_token",
]

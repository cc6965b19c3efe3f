"""
Pytest configuration and fixtures per il Registro Fatture.

Ogni test usa un database SQLite su file, nuovo e isolato, con lo
stesso engine (BEGIN IMMEDIATE, trigger di audit) usato in sviluppo.
"""

import os

# La configurazione va impostata prima di importare i moduli app.*
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "testing"

import uuid
from typing import AsyncGenerator, Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.database import build_engine, build_session_factory, init_db, tenant_session
from app.core.tenancy import RequestContext
from app.schemas.invoice import InvoiceCreate
from app.services.audit_service import AuditService
from app.services.idempotency_service import IdempotencyCache
from app.services.invoice_service import InvoiceService
from app.services.numbering_service import NumberingService
from app.services.settings_service import TenantSettingsService
from factories import make_invoice


# ============================================================
# Fixtures per Database
# ============================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Engine SQLite su file temporaneo con schema creato."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


# ============================================================
# Fixtures per Contesto Tenant
# ============================================================


@pytest.fixture
def tenant_a() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def tenant_b() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def actor_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_ctx(actor_id) -> Callable[..., RequestContext]:
    """Costruisce un RequestContext per il tenant indicato."""

    def _make(tenant_id: Optional[uuid.UUID], request_id: Optional[str] = None) -> RequestContext:
        return RequestContext(
            request_id=request_id or str(uuid.uuid4()),
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    return _make


@pytest.fixture
def open_session(session_factory, make_ctx):
    """Apre una sessione legata al tenant: `async with open_session(tenant) as db`."""

    def _open(tenant_id: Optional[uuid.UUID], *, skip_tenant: bool = False):
        return tenant_session(make_ctx(tenant_id), skip_tenant=skip_tenant, factory=session_factory)

    return _open


# ============================================================
# Fixtures per Service
# ============================================================


@pytest.fixture
def audit_service() -> AuditService:
    return AuditService()


@pytest.fixture
def settings_service(audit_service) -> TenantSettingsService:
    return TenantSettingsService(audit_service)


@pytest.fixture
def invoice_service(audit_service, settings_service) -> InvoiceService:
    return InvoiceService(
        numbering=NumberingService(max_retries=3),
        audit=audit_service,
        settings_service=settings_service,
        cache=IdempotencyCache(),
    )


# ============================================================
# Fixtures per Dati Documento
# ============================================================


@pytest.fixture
def draft_data() -> InvoiceCreate:
    """Documento FV in modalità TTC con una riga B da 1160.00."""
    return make_invoice()

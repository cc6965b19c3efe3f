"""
Configurazione Database - SQLAlchemy 2.0 Async
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Definisce engine, session factory e sessioni legate al contesto tenant.

PostgreSQL (asyncpg) è il database di produzione. SQLite (aiosqlite) è
supportato per sviluppo e test: le transazioni partono con BEGIN IMMEDIATE
così che le scritture concorrenti si serializzino sul lock del file e i
SAVEPOINT funzionino.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import Table, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.core.tenancy import RequestContext, bind_context
from app.models import Base

# Logger per questo modulo
logger = logging.getLogger(__name__)


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Crea l'engine async per l'URL indicato.

    Args:
        database_url: URL SQLAlchemy (postgresql+asyncpg o sqlite+aiosqlite)
        echo: Log delle query

    Returns:
        AsyncEngine: Engine configurato per il dialetto
    """
    if database_url.startswith("sqlite"):
        async_engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": settings.sqlite_busy_timeout},
        )

        @event.listens_for(async_engine.sync_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
            # Il driver non deve emettere BEGIN da solo
            dbapi_connection.isolation_level = None

        @event.listens_for(async_engine.sync_engine, "begin")
        def _begin_immediate(conn) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return async_engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,   # Verifica connessione prima di usarla
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ------------------------------------------------------------
# Engine e Session Factory
# ------------------------------------------------------------
engine: AsyncEngine = build_engine(settings.database_url, echo=settings.debug)

AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def tenant_session(
    ctx: RequestContext,
    *,
    skip_tenant: bool = False,
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Apre una sessione legata al contesto della richiesta.

    Args:
        ctx: Contesto (request id, attore, tenant)
        skip_tenant: Disattiva il filtro tenant (solo percorsi di manutenzione)
        factory: Session factory alternativa (default: AsyncSessionLocal)

    Yields:
        AsyncSession: Sessione con contesto in session.info
    """
    session_factory = factory or AsyncSessionLocal
    async with session_factory() as session:
        bind_context(session, ctx, skip_tenant=skip_tenant)
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def dialect_insert(db: AsyncSession, table: Table):
    """
    Costrutto INSERT del dialetto corrente, con supporto ON CONFLICT.

    Raises:
        RuntimeError: Se il dialetto non supporta gli upsert usati dal registro
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Dialetto non supportato per upsert: {dialect_name}")


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Verifica la connessione e crea lo schema se mancante.

    Operazione idempotente eseguita una sola volta all'avvio, mai
    all'interno di una transazione di richiesta. Crea anche i trigger
    append-only del registro di audit.
    """
    target = bind or engine
    try:
        async with target.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Connessione al database stabilita e schema verificato")
    except Exception as e:
        logger.error("Errore inizializzazione database: %s", e)
        raise


async def close_db() -> None:
    """
    Chiude le connessioni al database.

    Da chiamare durante lo shutdown dell'applicazione.
    """
    await engine.dispose()
    logger.info("Connessioni database chiuse")

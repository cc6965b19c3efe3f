"""
Main Entry Point - FastAPI Application
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Configura l'applicazione FastAPI con middleware, router e lifecycle.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import AppException

# ------------------------------------------------------------
# Configurazione Logging
# ------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


# ------------------------------------------------------------
# Lifespan Handler
# ------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestisce il ciclo di vita dell'applicazione.

    - Startup: verifica il database e crea lo schema
    - Shutdown: chiude le connessioni database
    """
    # Startup
    logger.info(f"Avvio {settings.app_name} v{settings.app_version}")
    await init_db()
    logger.info("Applicazione avviata con successo")

    yield

    # Shutdown
    logger.info("Arresto applicazione in corso...")
    await close_db()
    logger.info("Applicazione arrestata")


# ------------------------------------------------------------
# FastAPI Application
# ------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    description="Registro multi-tenant di fatture fiscali - Backend API",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# ------------------------------------------------------------
# Exception Handlers
# ------------------------------------------------------------
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Gestore per tutte le eccezioni di dominio.

    Usa status HTTP e codice errore portati dall'eccezione.
    """
    if exc.status_code >= 500:
        logger.error("Errore applicativo %s: %s", exc.error_code, exc.detail)
    else:
        logger.info("Richiesta rifiutata %s: %s", exc.error_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "extra": exc.extra,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Gestore generico per tutte le eccezioni non catturate.

    Converte l'eccezione in risposta HTTP 500 e logga l'errore.
    """
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Errore interno del server", "error_code": "INTERNAL_SERVER_ERROR"},
    )


# ------------------------------------------------------------
# Middleware
# ------------------------------------------------------------
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Propaga o genera l'identificativo di richiesta."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------
@app.get(
    "/health",
    name="Health Check",
    summary="Controlla lo stato dell'applicazione",
    tags=["System"],
)
async def health_check() -> dict[str, str]:
    """
    Endpoint per il controllo dello stato di salute.

    Returns:
        dict: Stato dell'applicazione
    """
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


# ------------------------------------------------------------
# Router
# ------------------------------------------------------------
from app.api.v1 import api_v1_router  # noqa: E402

app.include_router(api_v1_router)

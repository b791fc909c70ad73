"""
Point d'entrée principal de l'hôte local Library Attendance.
Démarrage : uvicorn app.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.container import build_container
from app.exceptions import NoStorageAvailableError
from app.routers import attendance, realtime, storage, students, sync
from app.scheduler import STARTUP_CHECK_JOB_ID
from app.services import storage_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Cycle de vie : construit les services, initialise le stockage,
    démarre le scheduler et la première synchronisation ; arrête tout à la sortie.
    """
    logging.getLogger("app").setLevel(settings.LOG_LEVEL)

    container = build_container(settings)
    app.state.container = container

    try:
        await container.storage.init()
    except NoStorageAvailableError as exc:
        logger.critical("Initialisation du stockage impossible : %s", exc)
        container.storage.degrade_to_memory()
    if container.storage.get_current_driver_name() == "sqlite":
        await asyncio.to_thread(storage_service.import_legacy_json, container.database, settings.DATA_DIR)
        if settings.ENCRYPTION_ENABLED:
            await asyncio.to_thread(container.database.encrypt_plain_rows)

    container.scheduler.start_auto_sync(container.orchestrator.on_interval, settings.SYNC_INTERVAL_SECONDS)
    container.scheduler.schedule_once(
        STARTUP_CHECK_JOB_ID,
        settings.STARTUP_ONLINE_CHECK_SECONDS,
        container.orchestrator.startup_check,
    )
    container.scheduler.start()
    startup_sync = asyncio.create_task(container.orchestrator.start())

    yield

    if not startup_sync.done():
        startup_sync.cancel()
    container.realtime.shutdown()
    container.scheduler.stop()
    await container.remote.aclose()
    container.database.close()


app = FastAPI(
    title="Library Attendance API",
    description="Hôte local offline-first du suivi de fréquentation de la bibliothèque",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost (l'interface tourne sur la même machine).
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


app.include_router(students.router)
app.include_router(attendance.router)
app.include_router(sync.router)
app.include_router(storage.router)
app.include_router(realtime.router)


@app.exception_handler(NoStorageAvailableError)
async def no_storage_handler(request: Request, exc: NoStorageAvailableError) -> JSONResponse:
    logger.critical("Aucun stockage local disponible : %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Stockage local indisponible."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour garantir que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "Library Attendance API", "version": "0.1.0"}

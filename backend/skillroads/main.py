import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from . import telemetry_pipeline
from .admin_routes import router as admin_router
from .config import Settings, get_settings
from .db.monitoring import probe_database
from .db.session import get_engine
from .developer_routes import router as developer_router
from .logging_config import configure_logging
from .progress_routes import router as progress_router


configure_logging()
logger = logging.getLogger(__name__)

settings_snapshot = get_settings()
logger.info("Progression service starting in %s persistence mode", settings_snapshot.persistence_mode)
if settings_snapshot.uses_database and not settings_snapshot.database_url:
    logger.warning("SKILLROADS_DATABASE_URL is not set; progression requests will fail until it is configured.")

app = FastAPI(title="Skill Roads Progression Service", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings_snapshot.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(progress_router)
app.include_router(admin_router)
if settings_snapshot.debug_endpoints:
    app.include_router(developer_router)
    logger.info("Developer endpoints enabled")

telemetry_pipeline.install()


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence_mode": settings.persistence_mode}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    try:
        probe = probe_database(get_engine())
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return {
        "status": "ok",
        "persistence_mode": settings.persistence_mode,
        "latency_ms": probe["latency_ms"],
        "pool": probe["pool"],
    }

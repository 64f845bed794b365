import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from timetracker import auth, entries, estimates, export, settings, summary, sync, utilities
from timetracker.auth import require_user
from timetracker.db import get_db
from timetracker.middleware import SecurityHeadersMiddleware
from timetracker.providers import ProviderError, SyncOptions, source_stats
from timetracker.schema import init_database

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run database initialization on startup."""
    logger.info("Running startup tasks...")
    init_database()
    logger.info("Startup tasks complete.")
    yield


app = FastAPI(title="timetracker", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)

# Everything under /api except login and refresh needs an access token.
protected = [Depends(require_user)]
api = APIRouter(prefix="/api", dependencies=protected)


# -------------------------------------------------
# Pydantic models
# -------------------------------------------------
class SyncRequest(BaseModel):
    start_date: str | None = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    end_date: str | None = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class ProviderStatus(BaseModel):
    name: str
    configured: bool
    entry_count: int
    last_sync: str | None


# -------------------------------------------------
# Sync Routes
# -------------------------------------------------
def _run_sync(source: str, force: bool, body: SyncRequest | None) -> dict:
    body = body or SyncRequest()
    if bool(body.start_date) != bool(body.end_date):
        raise HTTPException(400, "start_date and end_date must be given together")

    provider = sync.get_provider(source)
    options = SyncOptions(force_refresh=force, custom_start=body.start_date, custom_end=body.end_date)
    try:
        return provider.sync(options).to_dict()
    except ProviderError as e:
        logger.error(f"{provider.name} sync failed: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    except Exception as e:
        logger.error(f"{provider.name} sync failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e


@api.post("/sync/toggl", summary="Sync time entries from Toggl")
def sync_toggl(
    force: bool = Query(False, description="Bypass the response cache"),
    body: SyncRequest | None = None,
):
    """
    Without a body the last three months are synced, served from the file
    cache when it is younger than ten minutes and `force` is not set. A
    `start_date`/`end_date` pair syncs exactly that range and bypasses the cache.
    """
    return _run_sync("TOGGL", force, body)


@api.post("/sync/tempo", summary="Sync worklogs from Tempo")
def sync_tempo(
    force: bool = Query(False, description="Bypass the response cache"),
    body: SyncRequest | None = None,
):
    return _run_sync("TEMPO", force, body)


@api.post("/sync", summary="Sync every configured provider")
def sync_everything(force: bool = Query(False, description="Bypass the response cache")):
    return sync.sync_all(force=force)


@api.get("/providers/status", response_model=list[ProviderStatus], summary="Provider configuration and entry counts")
def providers_status():
    statuses = [
        {"name": provider.name, "configured": provider.validate(), **provider.entry_stats()}
        for provider in sync.get_all_providers()
    ]
    statuses.append({"name": "MANUAL", "configured": True, **source_stats("MANUAL")})
    return statuses


@api.get("/config/jira", summary="Jira base URL for linking issue keys")
def jira_config() -> dict:
    return {"base_url": settings.JIRA_BASE_URL, "configured": bool(settings.JIRA_BASE_URL)}


# -------------------------------------------------
# Routes
# -------------------------------------------------
@app.get("/health", summary="Liveness and database check")
def health(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    timestamp = datetime.now(UTC).isoformat().replace("+00:00", "Z")
    try:
        conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": "Database connection failed", "timestamp": timestamp},
        )
    return {"status": "healthy", "timestamp": timestamp}


app.include_router(auth.router)
app.include_router(api)
app.include_router(entries.router, dependencies=protected)
app.include_router(summary.router, dependencies=protected)
app.include_router(estimates.router, dependencies=protected)
app.include_router(utilities.router, dependencies=protected)
app.include_router(utilities.uploads_router, dependencies=protected)
app.include_router(export.router, dependencies=protected)


# -------------------------------------------------
# Run directly (dev only)
# -------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("timetracker.main:app", host="127.0.0.1", port=4545, reload=True)

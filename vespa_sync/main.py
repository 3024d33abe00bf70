import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

import httpx
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .cache import SharedCacheClient
from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_routes import reset_session_registry, router as session_router
from .telemetry import event_counts


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await reset_session_registry()


app = FastAPI(title="VESPA Sync", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(session_router)

settings_snapshot = get_settings()
logger.info("Sync service starting with record store URL: %s", settings_snapshot.knack_api_url)
logger.info("Shared cache configured: %s", bool(settings_snapshot.shared_cache_url))


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/healthz/cache")
async def cache_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    counts = event_counts()
    lookups = {key: value for key, value in counts.items() if key.startswith("cache_lookup")}
    if not settings.shared_cache_url:
        return {"status": "disabled", "lookups": lookups}

    client = SharedCacheClient(settings.shared_cache_url, timeout_seconds=settings.request_timeout_seconds)
    try:
        upstream_status = await client.ping()
    except httpx.HTTPError as exc:
        logger.warning("Shared cache health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    finally:
        await client.aclose()
    return {"status": "ok", "upstream_status": upstream_status, "lookups": lookups}

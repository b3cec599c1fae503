import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .engine import shutdown_sync_engine
from .lesson_routes import router as lesson_router
from .logging_config import configure_logging
from .session_routes import router as session_router


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await shutdown_sync_engine()


app = FastAPI(title="lessonsync", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(session_router)
app.include_router(lesson_router)

settings_snapshot = get_settings()
logger.info("Progress sync starting with remote URL: %s", settings_snapshot.remote_url)
logger.info("Local store mode: %s", settings_snapshot.local_store_mode)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "local_store_mode": settings.local_store_mode}

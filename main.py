"""FastAPI entry point for the submission integrity service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.detection import router as detection_router
from api.health import router as health_router
from config.settings import get_settings
from services.concurrency import ConcurrencyLimitMiddleware
from services.digest_service import get_digest_service
from services.middleware import RequestIdMiddleware, configure_logging
from services.store_client import get_store_client

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the file-download client, and the store client unless running in memory."""
    digests = get_digest_service()
    await digests.start()

    store = None if settings.use_memory_store else get_store_client()
    if store is None:
        logger.info("In-memory submission store, skipping store client")
    else:
        await store.start()
    try:
        yield
    finally:
        if store is not None:
            await store.close()
        await digests.close()


app = FastAPI(
    title="Submission Integrity Service",
    description="Assignment plagiarism detection by file hash and metadata analysis",
    version="0.1.0",
    lifespan=lifespan,
)

# Last added runs first: CORS, then request id, then the run limiter
app.add_middleware(
    ConcurrencyLimitMiddleware,
    max_runs=settings.detection_max_concurrent_runs,
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)

app.include_router(health_router)
app.include_router(detection_router)


if __name__ == "__main__":
    # Production deployments use: gunicorn main:app -c deploy/gunicorn.conf.py
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.service_port,
        reload=settings.debug,
        workers=None if settings.debug else 2,
    )

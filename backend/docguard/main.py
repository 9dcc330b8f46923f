import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docguard.config import settings
from docguard.database import init_db
from docguard.dependencies import get_reliability_service
from docguard.routers import audit, documents, health, recovery, retry

logger = logging.getLogger("docguard")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    # Startup: create/migrate the ledger and integrity-check it
    init_db(settings.db_path)
    conn = sqlite3.connect(str(settings.db_path))
    try:
        result = conn.execute("PRAGMA integrity_check").fetchone()
    finally:
        conn.close()
    if result and result[0] == "ok":
        logger.info("Database integrity check passed.")
    else:
        logger.error("DATABASE INTEGRITY CHECK FAILED: %s", result)

    service = get_reliability_service()
    worker = asyncio.create_task(service.retry_queue.run())
    yield
    # Shutdown: let the current pass finish, then stop polling
    service.retry_queue.stop()
    worker.cancel()
    try:
        await worker
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="DocGuard",
    description="Document reliability: two-tier storage, audit, recovery and alerting",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents.router, prefix=settings.api_prefix)
app.include_router(audit.router, prefix=settings.api_prefix)
app.include_router(recovery.router, prefix=settings.api_prefix)
app.include_router(retry.router, prefix=settings.api_prefix)
app.include_router(health.router, prefix=settings.api_prefix)


@app.get("/health")
async def liveness():
    return {"status": "ok", "version": "0.1.0"}


def main():
    """Run the API server."""
    import uvicorn

    configure_logging(settings.log_level)
    logger.info("Starting server on %s:%d", settings.host, settings.port)
    uvicorn.run("docguard.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()

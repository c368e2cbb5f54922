import asyncio
import logging
from typing import Optional

from fastapi import FastAPI

from depfeed import __version__
from depfeed.api.feeds import router as feeds_router
from depfeed.core.dependencies import get_db_manager
from depfeed.core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


app = FastAPI(
    title="DependencyControl feed repository",
    version=__version__,
    description="Stores, resolves and validates DependencyControl update feeds.",
)

app.include_router(feeds_router, prefix="/api", tags=["feeds"])

_INDEX_TASK: Optional[asyncio.Task] = None


async def _periodic_rebuild_loop() -> None:
    """
    Background task that re-reads the feed directory every refresh_interval_seconds,
    picking up feeds that were edited on disk.
    """
    while True:
        db = get_db_manager()
        await asyncio.sleep(db.get_repository_config().refresh_interval_seconds)
        db.rebuild_index()


@app.on_event("startup")
async def startup_event() -> None:
    """
    Load the repository settings and feed index, and start the refresh task.
    """
    global _INDEX_TASK
    db = get_db_manager()
    logger.info(f"Serving {len(db.get_all_feeds())} feeds")

    if _INDEX_TASK is None:
        _INDEX_TASK = asyncio.create_task(_periodic_rebuild_loop())


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global _INDEX_TASK
    if _INDEX_TASK is not None:
        _INDEX_TASK.cancel()
        _INDEX_TASK = None


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "depfeed.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )

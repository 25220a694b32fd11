"""Board Sync API - Main Application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import settings
from .errors import BoardSyncError, NotFoundError, PartialCascadeError, StoreError, ValidationError
from .routes import boards, cards, columns
from .routes.common import close_store, get_store

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    StoreError: 502,
    PartialCascadeError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.app_name}...")
    get_store()
    yield
    logger.info(f"Shutting down {settings.app_name}...")
    close_store()


app = FastAPI(
    title=settings.app_name,
    description="Board, column and card ordering with optimistic sync",
    version=__version__,
    lifespan=lifespan
)


# Exception handlers
@app.exception_handler(BoardSyncError)
async def board_sync_exception_handler(request: Request, exc: BoardSyncError):
    status_code = next(
        (code for kind, code in STATUS_CODES.items() if isinstance(exc, kind)),
        500
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include routes
app.include_router(boards.router, prefix="/boards", tags=["boards"])
app.include_router(columns.router, prefix="/boards/{board_id}/columns", tags=["columns"])
app.include_router(cards.router, prefix="/boards/{board_id}/columns/{column_id}/cards", tags=["cards"])


@app.get("/health")
async def health():
    return {"status": "healthy", "service": settings.app_name, "version": __version__}


def run():
    """Serve the API with uvicorn"""
    import uvicorn

    logger.info(f"Serving {settings.app_name} on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .admin import router as admin_router
from .database import init_db
from .routes import router

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_db()
    logger.info("Family Cup predictor ready")
    yield


def create_app() -> FastAPI:
    """Application factory for the family prediction competition."""
    base_dir = Path(__file__).resolve().parent
    app = FastAPI(title="Family Cup Predictor", lifespan=lifespan)
    app.include_router(router)
    app.include_router(admin_router)
    static_dir = base_dir / "static"
    app.mount("/static", StaticFiles(directory=static_dir), name="static")
    return app


app = create_app()

import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import engine

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Investor portal starting (environment=%s)", settings.environment)
        await init_db()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Investor portal stopped")

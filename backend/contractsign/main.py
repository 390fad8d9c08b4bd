from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from contractsign.api.routes import documents, health
from contractsign.core.config import settings
from contractsign.core.logging_setup import configure_logging, logger
from contractsign.db.session import init_db


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    init_db()
    yield


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    application.include_router(health.router, prefix="/health")
    application.include_router(documents.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root() -> dict[str, str]:
        return {"service": settings.project_name}

    logger.info("contractsign API initialised")
    return application


app = create_app()

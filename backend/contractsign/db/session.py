from typing import Any, Generator

from sqlmodel import Session, SQLModel, create_engine

from contractsign.core.config import settings
from contractsign.core.logging_setup import logger
import contractsign.db.base  # noqa: F401  registers the tables on SQLModel.metadata

connect_args: dict[str, Any] = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args=connect_args,
)


def init_db() -> None:
    SQLModel.metadata.create_all(bind=engine)
    logger.info("Database schema ready (%s)", engine.url.get_backend_name())


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session

from typing import Annotated, Generator

from fastapi import Depends
from sqlmodel import Session

from contractsign.db.session import get_session
from contractsign.services.document import DocumentService


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_document_service(session: Annotated[Session, Depends(get_db)]) -> DocumentService:
    return DocumentService.from_settings(session)

from __future__ import annotations

import base64
import io
import os
import uuid
from typing import Iterable, Sequence, Union

import pytest
from docx import Document as DocxDocument
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from sqlmodel import Session, SQLModel, create_engine

from contractsign.api.deps import get_db, get_document_service
from contractsign.db import session as db_session_module
from contractsign.main import app
from contractsign.models.template import Template
from contractsign.services.certificates import CertificateIssuer
from contractsign.services.compositor import SignatureCompositor
from contractsign.services.converter import DocumentConverter, DraftPdfBackend
from contractsign.services.document import DocumentService
from contractsign.services.marker_locator import MarkerLocator
from contractsign.services.pades import PadesSigner
from contractsign.services.storage import LocalStorage
from contractsign.services.verifier import SignatureVerifier

pytestmark = pytest.mark.anyio

# A paragraph is either plain text or a list of runs (to split tokens across runs).
ParagraphContent = Union[str, Sequence[str]]


def _fill_paragraph(paragraph, item: ParagraphContent) -> None:  # type: ignore[no-untyped-def]
    runs = [item] if isinstance(item, str) else list(item)
    for text in runs:
        paragraph.add_run(text)


def build_docx(
    body: Iterable[ParagraphContent],
    *,
    header: Iterable[ParagraphContent] = (),
    footer: Iterable[ParagraphContent] = (),
) -> bytes:
    document = DocxDocument()
    for item in body:
        _fill_paragraph(document.add_paragraph(), item)

    section = document.sections[0]
    for part, items in ((section.header, list(header)), (section.footer, list(footer))):
        if not items:
            continue
        part.is_linked_to_previous = False
        first, *rest = items
        _fill_paragraph(part.paragraphs[0], first)
        for item in rest:
            _fill_paragraph(part.add_paragraph(), item)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def signature_data_url(size: tuple[int, int] = (300, 100), color: str = "navy") -> str:
    image = Image.new("RGBA", size, (255, 255, 255, 0))
    ImageDraw.Draw(image).line([(20, size[1] - 20), (size[0] - 20, 20)], fill=color, width=4)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def build_service(session: Session, storage_dir, *, signing_mode: str = "regenerate") -> DocumentService:  # type: ignore[no-untyped-def]
    locator = MarkerLocator()
    return DocumentService(
        session,
        storage=LocalStorage(base_dir=storage_dir),
        converter=DocumentConverter([DraftPdfBackend()]),
        locator=locator,
        compositor=SignatureCompositor(locator),
        issuer=CertificateIssuer(),
        pades=PadesSigner(reason="Teszt aláírás", location="Budapest"),
        verifier=SignatureVerifier(),
        signing_mode=signing_mode,
    )


PROJECT = {
    "title": "Tetőtér szigetelés",
    "client_name": "Kovács Anna",
    "client_zip": "1111",
    "client_city": "Budapest",
    "client_street": "Fő utca 1.",
    "client_email": "anna@example.com",
    "client_birth_date": "1980-03-07",
    "property_address_same": True,
    "area_sqm": 82.5,
    "floor_material": "wood",
    "insulation_option": "A",
}


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_db, None)
    db_session_module.engine = original_engine
    engine.dispose()


@pytest.fixture()
def storage_env(monkeypatch, tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("CONTRACTSIGN_STORAGE", str(storage_dir))
    yield storage_dir


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def document_service(db_session: Session, storage_env) -> DocumentService:
    return build_service(db_session, storage_env)


@pytest.fixture()
def client(db_engine, storage_env) -> TestClient:
    def override_service():
        with Session(db_engine) as session:
            yield build_service(session, storage_env)

    app.dependency_overrides[get_document_service] = override_service
    yield TestClient(app)
    app.dependency_overrides.pop(get_document_service, None)


@pytest.fixture()
def make_template(db_session: Session):
    def _make(
        body: Iterable[ParagraphContent],
        *,
        header: Iterable[ParagraphContent] = (),
        footer: Iterable[ParagraphContent] = (),
        name: str = "Vállalkozási szerződés",
        type: str = "vallalkozasi_szerzodes",
    ) -> Template:
        template = Template(name=name, type=type, file_bytes=build_docx(body, header=header, footer=footer))
        db_session.add(template)
        db_session.commit()
        db_session.refresh(template)
        return template

    return _make

from __future__ import annotations

import io
import logging
import os
import secrets
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from docx import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from contractsign.core.errors import ConversionError
from contractsign.core.logging_setup import get_logger

PDF_FORMAT = "pdf"
ARCHIVAL_PDF_FORMAT = (
    'pdf:writer_pdf_Export:{"SelectPdfVersion":{"type":"long","value":"2"},'
    '"UseTaggedPDF":{"type":"boolean","value":"true"}}'
)


@dataclass
class ConversionResult:
    ok: bool
    pdf_path: Path | None = None
    error: str | None = None
    missing_binary: bool = False


class ConversionBackend(Protocol):
    name: str

    def convert(self, source: Path, outdir: Path, *, archival: bool, timeout: float) -> ConversionResult:
        ...


@dataclass
class SofficeBackend:
    """LibreOffice in headless mode: ``<binary> --headless --convert-to pdf --outdir <dir> <file>``."""

    binary: str

    @property
    def name(self) -> str:
        return self.binary

    def build_command(self, source: Path, outdir: Path, *, archival: bool) -> list[str]:
        profile = (outdir / "lo_profile").resolve().as_uri()
        return [
            self.binary,
            f"-env:UserInstallation={profile}",
            "--headless",
            "--convert-to",
            ARCHIVAL_PDF_FORMAT if archival else PDF_FORMAT,
            "--outdir",
            str(outdir),
            str(source),
        ]

    def convert(self, source: Path, outdir: Path, *, archival: bool, timeout: float) -> ConversionResult:
        command = self.build_command(source, outdir, archival=archival)
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return ConversionResult(ok=False, missing_binary=True, error=f"{self.binary} not found")
        except subprocess.TimeoutExpired:
            return ConversionResult(ok=False, error=f"{self.binary} timed out after {timeout:g}s")
        except OSError as exc:
            return ConversionResult(ok=False, error=f"{self.binary} could not be started: {exc}")

        if completed.returncode != 0:
            stderr = (completed.stderr or b"").decode("utf-8", errors="replace").strip()
            return ConversionResult(
                ok=False,
                error=f"{self.binary} exited with status {completed.returncode}: {stderr or 'no output'}",
            )
        return ConversionResult(ok=True, pdf_path=outdir / f"{source.stem}.pdf")


# Characters outside cp1252 that the standard PDF fonts cannot show.
_DRAFT_FOLDING = str.maketrans({"ő": "ö", "Ő": "Ö", "ű": "ü", "Ű": "Ü"})


def _draft_text(value: str) -> str:
    return value.translate(_DRAFT_FOLDING).encode("cp1252", errors="replace").decode("cp1252")


def _wrap_text(text: str, max_chars: int) -> list[str]:
    words = text.split()
    lines: list[str] = []
    current: list[str] = []
    length = 0

    for word in words:
        prospective = length + len(word) + (1 if current else 0)
        if prospective > max_chars and current:
            lines.append(" ".join(current))
            current = [word]
            length = len(word)
        else:
            current.append(word)
            length = prospective

    if current:
        lines.append(" ".join(current))
    return lines


@dataclass
class DraftPdfBackend:
    """
    Text-only PDF rendering with reportlab.

    No layout fidelity: every paragraph becomes wrapped Helvetica lines, the
    first section's header is repeated at the top of each page and its footer
    at the bottom. Meant for development machines without LibreOffice and for
    tests.
    """

    name: str = "draft"
    font_name: str = "Helvetica"
    font_size: float = 11.0
    line_height: float = 14.0
    margin: float = 54.0
    max_chars: int = 90

    def convert(self, source: Path, outdir: Path, *, archival: bool, timeout: float) -> ConversionResult:  # noqa: ARG002
        try:
            pdf_bytes = self.render(source.read_bytes())
        except Exception as exc:
            return ConversionResult(ok=False, error=f"draft rendering failed: {exc}")
        target = outdir / f"{source.stem}.pdf"
        target.write_bytes(pdf_bytes)
        return ConversionResult(ok=True, pdf_path=target)

    def _story_lines(self, document) -> list[str]:  # type: ignore[no-untyped-def]
        lines: list[str] = []
        for child in document.element.body.iterchildren():
            if child.tag == qn("w:p"):
                lines.append(Paragraph(child, document).text)
            elif child.tag == qn("w:tbl"):
                for row in Table(child, document).rows:
                    lines.append(" | ".join(cell.text for cell in row.cells))
        return lines

    @staticmethod
    def _section_lines(part) -> list[str]:  # type: ignore[no-untyped-def]
        if part is None or part.is_linked_to_previous:
            return []
        return [paragraph.text for paragraph in part.paragraphs if paragraph.text.strip()]

    def render(self, docx_bytes: bytes) -> bytes:
        document = DocxDocument(io.BytesIO(docx_bytes))
        section = document.sections[0] if document.sections else None
        header_lines = self._section_lines(section.header if section is not None else None)
        footer_lines = self._section_lines(section.footer if section is not None else None)

        pdf_buffer = io.BytesIO()
        pdf_canvas = canvas.Canvas(pdf_buffer, pagesize=A4)
        width, height = A4
        body_top = height - self.margin - self.line_height * len(header_lines)
        body_bottom = self.margin + self.line_height * len(footer_lines)
        y_cursor = body_top

        def decorate_page() -> None:
            pdf_canvas.setFont(self.font_name, self.font_size)
            y = height - self.margin + self.line_height
            for line in header_lines:
                y -= self.line_height
                pdf_canvas.drawString(self.margin, y, _draft_text(line))
            y = self.margin
            for line in reversed(footer_lines):
                pdf_canvas.drawString(self.margin, y, _draft_text(line))
                y += self.line_height

        def new_page() -> None:
            nonlocal y_cursor
            pdf_canvas.showPage()
            decorate_page()
            y_cursor = body_top

        def write_line(line: str) -> None:
            nonlocal y_cursor
            if y_cursor - self.line_height < body_bottom:
                new_page()
            y_cursor -= self.line_height
            pdf_canvas.drawString(self.margin, y_cursor, _draft_text(line))

        decorate_page()
        for text in self._story_lines(document):
            text = text.strip()
            if not text:
                y_cursor -= self.line_height / 2
                continue
            for line in _wrap_text(text, max_chars=self.max_chars):
                write_line(line)

        pdf_canvas.save()
        return pdf_buffer.getvalue()


def build_default_backends(settings) -> list[ConversionBackend]:  # type: ignore[no-untyped-def]
    binaries = list(settings.converter_binaries)
    if os.name == "nt":
        binaries = list(settings.converter_windows_paths) + binaries
    backends: list[ConversionBackend] = [SofficeBackend(binary) for binary in binaries]
    if settings.converter_allow_draft:
        backends.append(DraftPdfBackend())
    return backends


class DocumentConverter:
    """DOCX → PDF through the first available backend, with scratch files in a private temp dir."""

    def __init__(
        self,
        backends: Sequence[ConversionBackend],
        *,
        timeout: float = 30.0,
        archival: bool = False,
        workdir: str | Path | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not backends:
            raise ValueError("At least one conversion backend is required")
        self.backends = list(backends)
        self.timeout = timeout
        self.archival = archival
        self.workdir = Path(workdir) if workdir else None
        self.logger = logger or get_logger("converter")

    @classmethod
    def from_settings(cls, settings, *, logger: logging.Logger | None = None) -> "DocumentConverter":  # type: ignore[no-untyped-def]
        return cls(
            build_default_backends(settings),
            timeout=settings.converter_timeout_seconds,
            archival=settings.converter_archival,
            logger=logger,
        )

    @staticmethod
    def _session_prefix() -> str:
        return f"temp_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

    def _resolve_output(self, expected: Path | None, outdir: Path, prefix: str) -> Path:
        if expected is not None and expected.exists():
            return expected
        self.logger.warning("PDF not found at expected path %s, searching %s", expected, outdir)
        candidates = sorted(path for path in outdir.glob(f"{prefix}*.pdf") if path.is_file())
        if candidates:
            self.logger.info("Found PDF at %s", candidates[0])
            return candidates[0]
        raise ConversionError(f"Converted PDF not found at the expected path: {expected}")

    def convert(self, docx_bytes: bytes, *, archival: bool | None = None) -> bytes:
        archival = self.archival if archival is None else archival
        prefix = self._session_prefix()
        missing: list[str] = []

        with tempfile.TemporaryDirectory(prefix="contractsign-", dir=self.workdir) as tmp:
            outdir = Path(tmp)
            source = outdir / f"{prefix}.docx"
            source.write_bytes(docx_bytes)

            for backend in self.backends:
                self.logger.info("Converting DOCX to PDF with %s (archival=%s)", backend.name, archival)
                result = backend.convert(source, outdir, archival=archival, timeout=self.timeout)
                if result.missing_binary:
                    self.logger.warning("%s not found, trying the next converter", backend.name)
                    missing.append(backend.name)
                    continue
                if not result.ok:
                    self.logger.error("PDF conversion failed: %s", result.error)
                    raise ConversionError(
                        f"PDF conversion failed: {result.error}. "
                        "Check that LibreOffice is installed and working on the server."
                    )
                pdf_bytes = self._resolve_output(result.pdf_path, outdir, prefix).read_bytes()
                self.logger.info("PDF conversion successful, size: %d bytes", len(pdf_bytes))
                return pdf_bytes

        raise ConversionError(
            f"No document converter available (tried: {', '.join(missing)}). "
            "Install LibreOffice (soffice) on the server."
        )

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

import fitz  # PyMuPDF

from contractsign.core.errors import CompositionWarning
from contractsign.core.logging_setup import get_logger


@dataclass(frozen=True)
class MarkerPosition:
    """Where a marker was drawn: 1-based page, PDF user space, origin bottom-left."""

    page: int
    x: float
    y: float
    width: float
    height: float


class TextLayerCapability(Protocol):
    def search(self, pdf_bytes: bytes, markers: Sequence[str]) -> dict[str, list[MarkerPosition]]:
        ...

    def erase(self, pdf_bytes: bytes, positions: Sequence[MarkerPosition]) -> bytes:
        ...


def _to_position(page: fitz.Page, rect: fitz.Rect) -> MarkerPosition:
    # MuPDF hits are top-left based; convert back to the page's PDF space.
    pdf_rect = rect * ~page.transformation_matrix
    x0, x1 = sorted((pdf_rect.x0, pdf_rect.x1))
    y0, y1 = sorted((pdf_rect.y0, pdf_rect.y1))
    return MarkerPosition(page=page.number + 1, x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def _to_page_rect(page: fitz.Page, position: MarkerPosition) -> fitz.Rect:
    rect = fitz.Rect(position.x, position.y, position.x + position.width, position.y + position.height)
    return rect * page.transformation_matrix


class PymupdfTextLayer:
    """Marker boxes from MuPDF's text search, measured with the fonts embedded in the PDF."""

    def search(self, pdf_bytes: bytes, markers: Sequence[str]) -> dict[str, list[MarkerPosition]]:
        found: dict[str, list[MarkerPosition]] = {marker: [] for marker in markers}
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for page in doc:
                for marker in markers:
                    hits = sorted(page.search_for(marker), key=lambda rect: (rect.y0, rect.x0))
                    found[marker].extend(_to_position(page, rect) for rect in hits)
        return found

    def erase(self, pdf_bytes: bytes, positions: Sequence[MarkerPosition]) -> bytes:
        """Remove the marker glyphs from the content streams, leaving white boxes."""
        by_page: dict[int, list[MarkerPosition]] = defaultdict(list)
        for position in positions:
            by_page[position.page].append(position)
        if not by_page:
            return pdf_bytes

        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for number, page_positions in by_page.items():
                page = doc[number - 1]
                for position in page_positions:
                    page.add_redact_annot(_to_page_rect(page, position), fill=(1, 1, 1))
                page.apply_redactions(images=fitz.PDF_REDACT_IMAGE_NONE)
            return doc.tobytes(garbage=1, deflate=True)


class NullTextLayer:
    """Used when no text layer is available; every search finds nothing."""

    def search(self, pdf_bytes: bytes, markers: Sequence[str]) -> dict[str, list[MarkerPosition]]:  # noqa: ARG002
        return {marker: [] for marker in markers}

    def erase(self, pdf_bytes: bytes, positions: Sequence[MarkerPosition]) -> bytes:  # noqa: ARG002
        return pdf_bytes


class MarkerLocator:
    def __init__(self, text_layer: TextLayerCapability | None = None, logger: logging.Logger | None = None) -> None:
        self.text_layer = text_layer or PymupdfTextLayer()
        self.logger = logger or get_logger("locator")

    def locate(self, pdf_bytes: bytes, marker: str) -> list[MarkerPosition]:
        """Every occurrence of ``marker``, in page order, top to bottom."""
        return self.locate_all(pdf_bytes, [marker])[marker]

    def locate_all(self, pdf_bytes: bytes, markers: Iterable[str]) -> dict[str, list[MarkerPosition]]:
        markers = list(dict.fromkeys(markers))
        try:
            found = self.text_layer.search(pdf_bytes, markers)
        except Exception as exc:
            self.logger.warning("%s", CompositionWarning(f"Text layer search failed: {exc}"))
            return {marker: [] for marker in markers}
        self.logger.debug(
            "Marker search: %s",
            ", ".join(f"{marker}={len(found.get(marker, []))}" for marker in markers) or "nothing requested",
        )
        return {marker: found.get(marker, []) for marker in markers}

    def erase(self, pdf_bytes: bytes, positions: Sequence[MarkerPosition]) -> bytes:
        """Strip located markers from the text layer; the input comes back if that fails."""
        try:
            return self.text_layer.erase(pdf_bytes, positions)
        except Exception as exc:
            self.logger.warning("%s", CompositionWarning(f"Marker text removal failed: {exc}"))
            return pdf_bytes

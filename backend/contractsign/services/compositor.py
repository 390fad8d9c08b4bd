from __future__ import annotations

import base64
import binascii
import io
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from contractsign.core.errors import CompositionWarning
from contractsign.core.logging_setup import get_logger
from contractsign.models.document import SignerRole
from contractsign.services.marker_locator import MarkerLocator, MarkerPosition

ANCHORS = ("bottom-left", "bottom-right", "bottom-center", "custom")


def decode_signature_image(payload: str | bytes) -> Image.Image:
    """Decode a ``data:image/...;base64,`` URL, bare base64 or raw image bytes."""
    if isinstance(payload, str):
        raw = payload.strip()
        if raw.startswith("data:"):
            _, _, raw = raw.partition(",")
        try:
            data = base64.b64decode(raw, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise CompositionWarning(f"Invalid signature image encoding: {exc}") from exc
    else:
        data = payload
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise CompositionWarning(f"Unreadable signature image: {exc}") from exc
    return image.convert("RGBA")


def fit_image(pixel_width: int, pixel_height: int, max_width: float, max_height: float) -> tuple[float, float]:
    """Scale into the box keeping the aspect ratio, never enlarging past one point per pixel."""
    if pixel_width <= 0 or pixel_height <= 0:
        return 0.0, 0.0
    scale = min(max_width / pixel_width, max_height / pixel_height, 1.0)
    return pixel_width * scale, pixel_height * scale


def calculate_anchor_position(
    page_width: float,
    page_height: float,
    anchor: str,
    image_width: float,
    image_height: float,
    margin: float = 50.0,
    custom_x: Optional[float] = None,
    custom_y: Optional[float] = None,
    base_y: float = 80.0,
) -> tuple[float, float]:
    """Lower-left corner for an image placed without markers."""
    y = custom_y if custom_y is not None else base_y
    if anchor == "bottom-left":
        x = margin
    elif anchor == "bottom-center":
        x = (page_width - image_width) / 2
    elif anchor == "custom":
        x = custom_x if custom_x is not None else margin
    else:
        x = page_width - image_width - margin
    return x, y


@dataclass
class _Placement:
    image: Image.Image
    x: float
    y: float
    width: float
    height: float


class SignatureCompositor:
    def __init__(
        self,
        locator: MarkerLocator,
        *,
        max_width: float = 180.0,
        max_height: float = 60.0,
        redaction_padding: float = 2.0,
        anchor: str = "bottom-right",
        anchor_margin: float = 50.0,
        anchor_base_y: float = 80.0,
        anchor_spacing: float = 10.0,
        custom_x: Optional[float] = None,
        custom_y: Optional[float] = None,
        target_page: int = -1,
        logger: logging.Logger | None = None,
    ) -> None:
        if anchor not in ANCHORS:
            raise ValueError(f"Unknown signature anchor: {anchor}")
        self.locator = locator
        self.max_width = max_width
        self.max_height = max_height
        self.redaction_padding = redaction_padding
        self.anchor = anchor
        self.anchor_margin = anchor_margin
        self.anchor_base_y = anchor_base_y
        self.anchor_spacing = anchor_spacing
        self.custom_x = custom_x
        self.custom_y = custom_y
        self.target_page = target_page
        self.logger = logger or get_logger("compositor")

    @classmethod
    def from_settings(cls, settings, locator: MarkerLocator, *, logger: logging.Logger | None = None) -> "SignatureCompositor":  # type: ignore[no-untyped-def]
        return cls(
            locator,
            max_width=settings.signature_max_width,
            max_height=settings.signature_max_height,
            redaction_padding=settings.signature_redaction_padding,
            anchor=settings.signature_anchor,
            anchor_margin=settings.signature_anchor_margin,
            anchor_base_y=settings.signature_anchor_base_y,
            anchor_spacing=settings.signature_anchor_spacing,
            custom_x=settings.signature_custom_x,
            custom_y=settings.signature_custom_y,
            target_page=settings.signature_target_page,
            logger=logger,
        )

    def _decode_images(self, images_by_role: Mapping[SignerRole, str | bytes | None]) -> dict[SignerRole, Image.Image]:
        decoded: dict[SignerRole, Image.Image] = {}
        for role in SignerRole:
            payload = images_by_role.get(role)
            if not payload:
                continue
            try:
                decoded[role] = decode_signature_image(payload)
            except CompositionWarning as warning:
                self.logger.warning("Signature image of role %s skipped: %s", role.value, warning)
        return decoded

    def _resolve_page(self, page_count: int) -> int:
        if self.target_page < 0:
            index = page_count + self.target_page + 1
        else:
            index = self.target_page
        return min(max(index, 1), page_count)

    def placement_at(self, image: Image.Image, position: MarkerPosition) -> _Placement:
        width, height = fit_image(image.width, image.height, self.max_width, self.max_height)
        center_x = position.x + position.width / 2
        center_y = position.y + position.height / 2
        return _Placement(image=image, x=center_x - width / 2, y=center_y - height / 2, width=width, height=height)

    def anchor_box(self, page_width: float, page_height: float, image: Image.Image, stack_offset: float = 0.0) -> tuple[float, float, float, float]:
        width, height = fit_image(image.width, image.height, self.max_width, self.max_height)
        x, y = calculate_anchor_position(
            page_width,
            page_height,
            self.anchor,
            width,
            height,
            margin=self.anchor_margin,
            custom_x=self.custom_x,
            custom_y=self.custom_y,
            base_y=self.anchor_base_y,
        )
        return x, y + stack_offset, width, height

    def signature_field_box(
        self,
        pdf_bytes: bytes,
        markers: Sequence[str],
        image: Image.Image,
    ) -> tuple[int, tuple[float, float, float, float]]:
        """Page and ``(x1, y1, x2, y2)`` for a visible signature field: first marker found, else the anchor."""
        found = self.locator.locate_all(pdf_bytes, markers)
        for marker in markers:
            positions = found.get(marker) or []
            if positions:
                placement = self.placement_at(image, positions[0])
                return positions[0].page, (
                    placement.x,
                    placement.y,
                    placement.x + placement.width,
                    placement.y + placement.height,
                )

        reader = PdfReader(io.BytesIO(pdf_bytes))
        page_number = self._resolve_page(len(reader.pages))
        page = reader.pages[page_number - 1]
        x, y, width, height = self.anchor_box(float(page.mediabox.width), float(page.mediabox.height), image)
        return page_number, (x, y, x + width, y + height)

    def composite(
        self,
        pdf_bytes: bytes,
        markers_by_role: Mapping[SignerRole, Sequence[str]],
        images_by_role: Mapping[SignerRole, str | bytes | None],
    ) -> bytes:
        """
        White out every signature marker and draw the signature images.

        Marker glyphs are removed from the text layer and covered with a
        padded white box. Images are centred on each marker of their role. When no marker is
        found at all, images go to the configured anchor instead, stacked
        upward in role order. Failures are logged and the input is returned.
        """
        try:
            return self._composite(pdf_bytes, markers_by_role, images_by_role)
        except Exception as exc:
            warning = exc if isinstance(exc, CompositionWarning) else CompositionWarning(str(exc))
            self.logger.warning("Signature compositing skipped: %s", warning)
            return pdf_bytes

    def _composite(
        self,
        pdf_bytes: bytes,
        markers_by_role: Mapping[SignerRole, Sequence[str]],
        images_by_role: Mapping[SignerRole, str | bytes | None],
    ) -> bytes:
        images = self._decode_images(images_by_role)
        markers = [marker for role in SignerRole for marker in markers_by_role.get(role, ())]
        found = self.locator.locate_all(pdf_bytes, markers) if markers else {}
        total = sum(len(positions) for positions in found.values())
        if total:
            pdf_bytes = self.locator.erase(pdf_bytes, [position for positions in found.values() for position in positions])

        reader = PdfReader(io.BytesIO(pdf_bytes))
        page_count = len(reader.pages)
        if page_count == 0:
            raise CompositionWarning("PDF has no pages")

        redactions: dict[int, list[MarkerPosition]] = defaultdict(list)
        placements: dict[int, list[_Placement]] = defaultdict(list)

        if total:
            for role in SignerRole:
                for marker in markers_by_role.get(role, ()):
                    for position in found.get(marker, []):
                        redactions[position.page].append(position)
                        if role in images:
                            placements[position.page].append(self.placement_at(images[role], position))
            self.logger.info("Signature markers found: %d, images placed: %d", total, sum(map(len, placements.values())))
        elif images:
            page_number = self._resolve_page(page_count)
            target = reader.pages[page_number - 1]
            page_width = float(target.mediabox.width)
            page_height = float(target.mediabox.height)
            offset = 0.0
            for role in SignerRole:
                if role not in images:
                    continue
                x, y, width, height = self.anchor_box(page_width, page_height, images[role], offset)
                placements[page_number].append(_Placement(image=images[role], x=x, y=y, width=width, height=height))
                offset += height + self.anchor_spacing
            self.logger.info("No signature markers found, images placed at the %s anchor on page %d", self.anchor, page_number)
        else:
            return pdf_bytes

        writer = PdfWriter()
        for page_number, page in enumerate(reader.pages, start=1):
            if page_number in redactions or page_number in placements:
                overlay = self._overlay(
                    float(page.mediabox.width),
                    float(page.mediabox.height),
                    redactions.get(page_number, []),
                    placements.get(page_number, []),
                )
                page.merge_page(overlay)
            writer.add_page(page)

        output = io.BytesIO()
        writer.write(output)
        return output.getvalue()

    def _overlay(self, width: float, height: float, redactions: Sequence[MarkerPosition], placements: Sequence[_Placement]):  # type: ignore[no-untyped-def]
        stream = io.BytesIO()
        c = canvas.Canvas(stream, pagesize=(width, height))
        pad = self.redaction_padding
        c.setFillColor(colors.white)
        c.setStrokeColor(colors.white)
        for position in redactions:
            c.rect(
                position.x - pad,
                position.y - pad,
                position.width + 2 * pad,
                position.height + 2 * pad,
                stroke=0,
                fill=1,
            )
        for placement in placements:
            c.drawImage(
                ImageReader(placement.image),
                placement.x,
                placement.y,
                width=placement.width,
                height=placement.height,
                mask="auto",
            )
        c.save()
        stream.seek(0)
        return PdfReader(stream).pages[0]

from __future__ import annotations

import hashlib
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image
from pyhanko import stamp
from pyhanko.pdf_utils import images
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.sign import fields, signers

from contractsign.core.errors import SigningError
from contractsign.core.logging_setup import get_logger
from contractsign.models.document import SignerRole
from contractsign.services.certificates import EphemeralIdentity

MIN_BYTES_RESERVED = 8192


@dataclass
class PadesResult:
    signed_pdf: bytes
    sha256: str
    field_name: str


def signature_field_name(role: SignerRole | str) -> str:
    value = role.value if isinstance(role, SignerRole) else str(role)
    return f"Signature_{value}"


class PadesSigner:
    """Embed a PAdES baseline signature made with an ephemeral identity."""

    def __init__(
        self,
        *,
        reason: str | None = None,
        location: str | None = None,
        bytes_reserved: int = 16384,
        logger: logging.Logger | None = None,
    ) -> None:
        self.reason = reason
        self.location = location
        self.bytes_reserved = max(int(bytes_reserved), MIN_BYTES_RESERVED)
        self.logger = logger or get_logger("pades")

    @classmethod
    def from_settings(cls, settings, *, logger: logging.Logger | None = None) -> "PadesSigner":  # type: ignore[no-untyped-def]
        return cls(
            reason=settings.pades_reason,
            location=settings.pades_location,
            bytes_reserved=settings.pades_bytes_reserved,
            logger=logger,
        )

    def _load_signer(self, identity: EphemeralIdentity) -> signers.SimpleSigner:
        signer = signers.SimpleSigner.load_pkcs12_data(
            identity.pkcs12_container,
            other_certs=[],
            passphrase=identity.pkcs12_password,
        )
        if signer is None:
            raise SigningError("Could not load the signing identity from its PKCS#12 container")
        return signer

    def sign(
        self,
        pdf_bytes: bytes,
        identity: EphemeralIdentity,
        role: SignerRole,
        *,
        signer_name: Optional[str] = None,
        field_box: Optional[tuple[float, float, float, float]] = None,
        page: Optional[int] = None,
        stamp_image: Optional[Image.Image] = None,
    ) -> PadesResult:
        """
        Sign ``pdf_bytes`` as an incremental update.

        ``field_box`` is ``(x1, y1, x2, y2)`` in PDF user space on the 1-based
        ``page`` (negative counts from the end); without it the signature is
        invisible. ``stamp_image`` becomes the appearance of a visible field.
        """
        field_name = signature_field_name(role)
        if field_box is not None:
            on_page = (page - 1) if page and page > 0 else (page if page else -1)
            field_spec = fields.SigFieldSpec(
                sig_field_name=field_name,
                on_page=on_page,
                box=tuple(int(round(value)) for value in field_box),
            )
        else:
            field_spec = fields.SigFieldSpec(sig_field_name=field_name)

        stamp_style = None
        if stamp_image is not None and field_box is not None:
            stamp_style = stamp.TextStampStyle(
                stamp_text="",
                background=images.PdfImage(stamp_image),
                background_opacity=1,
                border_width=0,
            )

        metadata = signers.PdfSignatureMetadata(
            field_name=field_name,
            md_algorithm="sha256",
            subfilter=fields.SigSeedSubFilter.PADES,
            reason=self.reason,
            location=self.location,
            name=signer_name,
        )

        try:
            writer = IncrementalPdfFileWriter(io.BytesIO(pdf_bytes), strict=False)
            pdf_signer = signers.PdfSigner(
                metadata,
                signer=self._load_signer(identity),
                stamp_style=stamp_style,
                new_field_spec=field_spec,
            )
            output = io.BytesIO()
            pdf_signer.sign_pdf(writer, output=output, bytes_reserved=self.bytes_reserved)
            signed_pdf = output.getvalue()
        except SigningError:
            raise
        except Exception as exc:
            self.logger.error("PAdES signing failed for field %s: %s", field_name, exc)
            raise SigningError(f"PAdES signing failed: {exc}") from exc

        sha256 = hashlib.sha256(signed_pdf).hexdigest()
        self.logger.info("PAdES signature %s embedded (%d bytes, sha256 %s)", field_name, len(signed_pdf), sha256)
        return PadesResult(signed_pdf=signed_pdf, sha256=sha256, field_name=field_name)

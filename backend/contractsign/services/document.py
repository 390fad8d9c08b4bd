from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from sqlmodel import Session

from contractsign.core.config import Settings, get_settings
from contractsign.core.errors import CompositionWarning, NotFoundError, SigningError
from contractsign.core.logging_setup import get_logger
from contractsign.models.document import GeneratedDocument, SignatureVersion, SignerRole, SigningStatus
from contractsign.models.template import DocumentType, Template
from contractsign.schemas.document import SignatureRecord, SignerIdentity, VerificationResult
from contractsign.schemas.project import ProjectRecord
from contractsign.services.certificates import CertificateIssuer, compute_document_hash
from contractsign.services.compositor import SignatureCompositor, decode_signature_image
from contractsign.services.converter import DocumentConverter
from contractsign.services.marker_locator import MarkerLocator, NullTextLayer, PymupdfTextLayer
from contractsign.services.pades import PadesSigner
from contractsign.services.placeholders import MARKERS_BY_ROLE, detect_signature_requirements
from contractsign.services.storage import StorageBackend, get_storage
from contractsign.services.template_renderer import TemplateRenderer
from contractsign.services.tokens import build_tokens
from contractsign.services.verifier import SignatureVerifier
from contractsign.utils.filenames import artifact_name, signed_name

SIGNING_MODES = ("regenerate", "incremental")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _images_by_role(raw: Mapping[str, Any] | None) -> dict[SignerRole, str]:
    images: dict[SignerRole, str] = {}
    for key, value in (raw or {}).items():
        if not value:
            continue
        try:
            images[SignerRole(str(getattr(key, "value", key)))] = value
        except ValueError:
            continue
    return images


class DocumentService:
    """Generate contracts from templates and carry them through signing."""

    def __init__(
        self,
        session: Session,
        *,
        storage: StorageBackend,
        converter: DocumentConverter,
        locator: MarkerLocator,
        compositor: SignatureCompositor,
        issuer: CertificateIssuer,
        pades: PadesSigner,
        verifier: SignatureVerifier,
        renderer: TemplateRenderer | None = None,
        signing_mode: str = "regenerate",
        logger: logging.Logger | None = None,
    ) -> None:
        if signing_mode not in SIGNING_MODES:
            raise ValueError(f"Unknown signing mode: {signing_mode}")
        self.session = session
        self.storage = storage
        self.converter = converter
        self.locator = locator
        self.compositor = compositor
        self.issuer = issuer
        self.pades = pades
        self.verifier = verifier
        self.renderer = renderer or TemplateRenderer()
        self.signing_mode = signing_mode
        self.logger = logger or get_logger("documents")

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: Settings | None = None,
        *,
        storage: StorageBackend | None = None,
    ) -> "DocumentService":
        settings = settings or get_settings()
        text_layer = PymupdfTextLayer() if settings.text_layer_enabled else NullTextLayer()
        locator = MarkerLocator(text_layer)
        return cls(
            session,
            storage=storage or get_storage(settings),
            converter=DocumentConverter.from_settings(settings),
            locator=locator,
            compositor=SignatureCompositor.from_settings(settings, locator),
            issuer=CertificateIssuer.from_settings(settings),
            pades=PadesSigner.from_settings(settings),
            verifier=SignatureVerifier(),
            signing_mode=settings.signing_mode,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_template(self, template_id: str | UUID) -> Template:
        template = self.session.get(Template, UUID(str(template_id)))
        if template is None:
            raise NotFoundError("Template", template_id)
        return template

    def get_document(self, document_id: str | UUID) -> GeneratedDocument:
        document = self.session.get(GeneratedDocument, UUID(str(document_id)))
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    def load_file(self, document_id: str | UUID) -> tuple[GeneratedDocument, bytes]:
        document = self.get_document(document_id)
        return document, self.storage.load_bytes(document.storage_path)

    @staticmethod
    def status_of(document: GeneratedDocument) -> SigningStatus:
        signed_roles = document.signed_roles()
        if not signed_roles:
            return SigningStatus.UNSIGNED
        if all(role.value in signed_roles for role in document.required_roles()):
            return SigningStatus.FULLY_SIGNED
        return SigningStatus.PARTIALLY_SIGNED

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _convert(self, template: Template, record: ProjectRecord, rendered_on: date) -> bytes:
        tokens = build_tokens(record, today=rendered_on)
        docx_bytes = self.renderer.render(template.file_bytes, tokens)
        return self.converter.convert(docx_bytes)

    def _render(
        self,
        template: Template,
        record: ProjectRecord,
        rendered_on: date,
        images_by_role: Mapping[SignerRole, str],
    ) -> bytes:
        pdf_bytes = self._convert(template, record, rendered_on)
        return self.compositor.composite(pdf_bytes, MARKERS_BY_ROLE, images_by_role)

    def _layout_pdf(self, document: GeneratedDocument) -> bytes:
        """The converted contract before compositing, markers still in its text layer."""
        template = self.get_template(document.template_id)
        record = ProjectRecord.model_validate(document.source_record or {})
        return self._convert(template, record, document.rendered_on or date.today())

    def render_pdf(self, document: GeneratedDocument, images_by_role: Mapping[SignerRole, str] | None = None) -> bytes:
        """Re-run the pipeline from the stored template and record, keeping the original contract date."""
        template = self.get_template(document.template_id)
        record = ProjectRecord.model_validate(document.source_record or {})
        return self._render(template, record, document.rendered_on or date.today(), images_by_role or {})

    def generate(
        self,
        template_id: str | UUID,
        record: ProjectRecord | Mapping[str, Any],
        *,
        images: Mapping[SignerRole, str] | None = None,
        today: date | None = None,
    ) -> GeneratedDocument:
        template = self.get_template(template_id)
        if not isinstance(record, ProjectRecord):
            record = ProjectRecord.model_validate(dict(record))
        rendered_on = today or date.today()
        images_by_role = _images_by_role(images)

        pdf_bytes = self._render(template, record, rendered_on, images_by_role)
        requires_a, requires_b = detect_signature_requirements(template.file_bytes)

        document = GeneratedDocument(
            type=DocumentType.coerce(template.type),
            template_id=template.id,
            file_name=artifact_name(template.name, record.title, rendered_on),
            storage_path="",
            sha256=compute_document_hash(pdf_bytes),
            size_bytes=len(pdf_bytes),
            requires_signature_a=requires_a,
            requires_signature_b=requires_b,
            signature_data={"images": {role.value: image for role, image in images_by_role.items()}}
            if images_by_role
            else {},
            source_record=record.model_dump(mode="json"),
            rendered_on=rendered_on,
        )
        document.storage_path = self.storage.save_bytes(
            root=f"documents/{document.id}",
            name=document.file_name,
            data=pdf_bytes,
        )
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        self.logger.info(
            "Generated document %s from template %s (%s, requires a=%s b=%s)",
            document.id,
            template.id,
            document.file_name,
            requires_a,
            requires_b,
        )
        return document

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _check_can_sign(self, document: GeneratedDocument, role: SignerRole) -> None:
        if not document.requires(role):
            raise SigningError(f"Document {document.id} does not require a signature from role '{role.value}'")
        if role.value in document.signed_roles():
            raise SigningError(f"Document {document.id} is already signed by role '{role.value}'")

    def _incremental_field(self, document: GeneratedDocument, role: SignerRole, visual_image: str | None):  # type: ignore[no-untyped-def]
        if not visual_image:
            return None, None, None
        try:
            image = decode_signature_image(visual_image)
        except CompositionWarning as warning:
            self.logger.warning("Visual signature of role %s not used: %s", role.value, warning)
            return None, None, None
        # Markers are gone from the stored artifact; the layout render still has them.
        page, box = self.compositor.signature_field_box(self._layout_pdf(document), MARKERS_BY_ROLE[role], image)
        return page, box, image

    def sign(
        self,
        document_id: str | UUID,
        role: SignerRole | str,
        signer: SignerIdentity,
        visual_image: str | None = None,
        *,
        now: datetime | None = None,
    ) -> GeneratedDocument:
        """
        Add role ``role``'s advanced electronic signature to a document.

        In ``regenerate`` mode a supplied image triggers a fresh render that
        carries this image and the other role's stored one; otherwise the
        stored PDF is signed. In ``incremental`` mode a document that already
        carries a signature is never re-rendered: the new signature is
        appended and the image becomes its field appearance.
        """
        document = self.get_document(document_id)
        role = SignerRole(getattr(role, "value", role))
        self._check_can_sign(document, role)
        now = now or _utcnow()

        signature_data = dict(document.signature_data or {})
        stored_images = dict(signature_data.get("images") or {})

        page = box = stamp_image = None
        if self.signing_mode == "incremental" and document.digital_signatures:
            pdf_before = self.storage.load_bytes(document.storage_path)
            page, box, stamp_image = self._incremental_field(document, role, visual_image)
        elif visual_image:
            images = _images_by_role(stored_images)
            images[role] = visual_image
            pdf_before = self.render_pdf(document, images)
        else:
            pdf_before = self.storage.load_bytes(document.storage_path)

        hash_before = compute_document_hash(pdf_before)
        identity = self.issuer.issue(signer.name, str(signer.email), signer.organization, now=now)
        result = self.pades.sign(
            pdf_before,
            identity,
            role,
            signer_name=signer.name,
            field_box=box,
            page=page,
            stamp_image=stamp_image,
        )

        file_name = signed_name(document.file_name, role.value)
        storage_path = self.storage.save_bytes(
            root=f"documents/{document.id}",
            name=file_name,
            data=result.signed_pdf,
        )

        record = SignatureRecord(
            signer_role=role,
            signer_name=signer.name,
            signer_email=str(signer.email),
            signed_at=now,
            certificate_fingerprint=identity.fingerprint,
            certificate_pem=identity.certificate_pem,
            document_hash_before_sign=hash_before,
            visual_signature_included=bool(visual_image),
        )

        if visual_image:
            stored_images[role.value] = visual_image
        fingerprints = dict(signature_data.get("fingerprints") or {})
        fingerprints[role.value] = identity.fingerprint
        signature_data.update(images=stored_images, fingerprints=fingerprints)

        # JSON columns are tracked by assignment only
        document.signature_data = signature_data
        document.digital_signatures = [*(document.digital_signatures or []), record.model_dump(mode="json")]
        document.file_name = file_name
        document.storage_path = storage_path
        document.sha256 = result.sha256
        document.size_bytes = len(result.signed_pdf)
        document.signature_version = SignatureVersion.PADES_AES
        document.signed = self.status_of(document) == SigningStatus.FULLY_SIGNED
        if document.signed:
            document.signed_at = now
        document.updated_at = now

        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        self.logger.info(
            "Document %s signed by role %s (%s); status %s",
            document.id,
            role.value,
            signer.email,
            self.status_of(document).value,
        )
        return document

    def regenerate_with_signature(self, document_id: str | UUID, image: str) -> GeneratedDocument:
        """Visual-only signing: re-render with the image as role ``a``'s signature, no certificate."""
        document = self.get_document(document_id)
        if document.digital_signatures:
            # A fresh render would drop the embedded signatures the records describe.
            raise SigningError(f"Document {document.id} carries advanced signatures and cannot be re-rendered")
        signature_data = dict(document.signature_data or {})
        stored_images = dict(signature_data.get("images") or {})
        stored_images[SignerRole.A.value] = image

        pdf_bytes = self.render_pdf(document, _images_by_role(stored_images))
        document.storage_path = self.storage.save_bytes(
            root=f"documents/{document.id}",
            name=document.file_name,
            data=pdf_bytes,
        )
        signature_data["images"] = stored_images
        document.signature_data = signature_data
        document.sha256 = compute_document_hash(pdf_bytes)
        document.size_bytes = len(pdf_bytes)
        document.signed = True
        document.signed_at = _utcnow()
        document.updated_at = document.signed_at
        document.signature_version = SignatureVersion.LEGACY_VISUAL

        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        self.logger.info("Document %s regenerated with a visual signature", document.id)
        return document

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, document_id: str | UUID) -> VerificationResult:
        document = self.get_document(document_id)
        pdf_bytes = self.storage.load_bytes(document.storage_path) if document.digital_signatures else None
        return self.verifier.verify(document, pdf_bytes)

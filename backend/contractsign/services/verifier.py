from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError
from pyhanko.pdf_utils.reader import PdfFileReader
from pyhanko.sign.validation import validate_pdf_signature

from contractsign.core.logging_setup import get_logger
from contractsign.models.document import GeneratedDocument
from contractsign.schemas.document import (
    EmbeddedSignatureCheck,
    SignatureCheck,
    SignatureRecord,
    VerificationResult,
)
from contractsign.services.certificates import certificate_validity

UNSIGNED = "unsigned"
PARTIALLY_SIGNED = "partially_signed"
FULLY_SIGNED_VALID = "fully_signed_valid"
FULLY_SIGNED_ISSUES = "fully_signed_issues"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class SignatureVerifier:
    """Read-only report over the signature records of a generated document."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, logger: logging.Logger | None = None) -> None:
        self.clock = clock or _utcnow
        self.logger = logger or get_logger("verifier")

    def _certificate_valid(self, record: SignatureRecord, now: datetime) -> bool:
        if not record.certificate_pem:
            return bool(record.certificate_fingerprint)
        try:
            not_before, not_after = certificate_validity(record.certificate_pem)
        except ValueError as exc:
            self.logger.warning("Unreadable certificate in record of role %s: %s", record.signer_role.value, exc)
            return False
        return _aware(not_before) <= now <= _aware(not_after)

    def _records(self, document: GeneratedDocument) -> list[SignatureRecord]:
        records: list[SignatureRecord] = []
        for raw in document.digital_signatures or []:
            try:
                records.append(SignatureRecord.model_validate(raw))
            except ValidationError as exc:
                self.logger.warning("Skipping malformed signature record on document %s: %s", document.id, exc)
        return records

    def inspect_embedded(self, pdf_bytes: bytes) -> list[EmbeddedSignatureCheck]:
        """Cryptographic check of the signatures embedded in the PDF itself."""
        try:
            reader = PdfFileReader(io.BytesIO(pdf_bytes), strict=False)
            embedded = list(reader.embedded_signatures)
        except Exception as exc:
            self.logger.warning("Could not read embedded signatures: %s", exc)
            return []

        checks: list[EmbeddedSignatureCheck] = []
        for signature in embedded:
            signer = None
            try:
                signer = signature.signer_cert.subject.human_friendly
                status = validate_pdf_signature(signature)
                checks.append(
                    EmbeddedSignatureCheck(
                        field_name=signature.field_name,
                        intact=bool(status.intact and status.valid),
                        signer=signer,
                        details={
                            "valid": bool(status.valid),
                            "trusted": bool(status.trusted),
                            "coverage": getattr(status.coverage, "name", str(status.coverage)),
                            "md_algorithm": status.md_algorithm,
                        },
                    )
                )
            except Exception as exc:
                self.logger.warning("Embedded signature %s could not be validated: %s", signature.field_name, exc)
                checks.append(
                    EmbeddedSignatureCheck(
                        field_name=signature.field_name,
                        intact=False,
                        signer=signer,
                        details={"error": str(exc)},
                    )
                )
        return checks

    def verify(self, document: GeneratedDocument, pdf_bytes: Optional[bytes] = None) -> VerificationResult:
        now = _aware(self.clock())
        records = self._records(document)

        checks = [
            SignatureCheck(
                signer_name=record.signer_name,
                signer_email=record.signer_email,
                signer_role=record.signer_role,
                signed_at=record.signed_at,
                certificate_valid=self._certificate_valid(record, now),
                certificate_fingerprint=record.certificate_fingerprint,
                document_integrity=bool(record.document_hash_before_sign),
                visual_signature_included=record.visual_signature_included,
            )
            for record in records
        ]

        present = {record.signer_role for record in records}
        if not records:
            status = UNSIGNED
        elif any(role not in present for role in document.required_roles()):
            status = PARTIALLY_SIGNED
        elif all(check.certificate_valid and check.document_integrity for check in checks):
            status = FULLY_SIGNED_VALID
        else:
            status = FULLY_SIGNED_ISSUES

        embedded = self.inspect_embedded(pdf_bytes) if pdf_bytes else []
        self.logger.info("Verified document %s: %s (%d record(s))", document.id, status, len(records))
        return VerificationResult(
            valid=status == FULLY_SIGNED_VALID,
            signatures=checks,
            document_status=status,
            verification_date=now,
            embedded=embedded,
        )

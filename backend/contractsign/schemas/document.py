from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from contractsign.models.document import SignatureVersion, SignerRole, SigningStatus
from contractsign.models.template import DocumentType
from contractsign.schemas.common import IDModel, Timestamped
from contractsign.schemas.project import ProjectRecord


# -------------------------------------------------------------------------
# Signing
# -------------------------------------------------------------------------

class SignerIdentity(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    email: EmailStr
    organization: Optional[str] = Field(default=None, max_length=256)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return (value or "").strip()


class SignatureRecord(BaseModel):
    signer_role: SignerRole
    signer_name: str
    signer_email: str
    signed_at: datetime
    certificate_fingerprint: str
    certificate_pem: Optional[str] = None
    document_hash_before_sign: Optional[str] = None
    visual_signature_included: bool = False


# -------------------------------------------------------------------------
# Requests
# -------------------------------------------------------------------------

class GenerateDocumentRequest(BaseModel):
    template_id: UUID
    project: ProjectRecord


class RegenerateWithSignatureRequest(BaseModel):
    document_id: UUID
    signature_data: str = Field(min_length=1)


class PadesSignRequest(BaseModel):
    document_id: UUID
    signer_role: SignerRole
    signer_name: str = Field(min_length=1)
    signer_email: EmailStr
    company_name: Optional[str] = None
    visual_signature: Optional[str] = None

    def identity(self) -> SignerIdentity:
        return SignerIdentity(
            name=self.signer_name,
            email=self.signer_email,
            organization=self.company_name,
        )


# -------------------------------------------------------------------------
# Responses
# -------------------------------------------------------------------------

class GeneratedDocumentRead(IDModel, Timestamped):
    type: DocumentType
    template_id: UUID
    file_name: str
    sha256: str
    size_bytes: int
    signed: bool
    signed_at: datetime | None = None
    signature_version: SignatureVersion | None = None
    requires_signature_a: bool
    requires_signature_b: bool
    rendered_on: date | None = None
    digital_signatures: list[SignatureRecord] = Field(default_factory=list)
    status: SigningStatus | None = None


class SignatureCheck(BaseModel):
    signer_name: str
    signer_email: str
    signer_role: SignerRole
    signed_at: datetime
    certificate_valid: bool
    certificate_fingerprint: str
    document_integrity: bool
    visual_signature_included: bool


class EmbeddedSignatureCheck(BaseModel):
    field_name: str
    intact: bool
    signer: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class VerificationResult(BaseModel):
    valid: bool
    signatures: list[SignatureCheck] = Field(default_factory=list)
    document_status: str
    verification_date: datetime
    embedded: list[EmbeddedSignatureCheck] = Field(default_factory=list)

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from contractsign.models.base import TimestampedModel, UUIDModel
from contractsign.models.template import DocumentType


class SignerRole(str, Enum):
    A = "a"  # main contractor, {%signature1}
    B = "b"  # client, {%signature2}


class SigningStatus(str, Enum):
    UNSIGNED = "unsigned"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"


class SignatureVersion(str, Enum):
    LEGACY_VISUAL = "legacy_visual"
    PADES_AES = "pades_aes"


class GeneratedDocument(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "generated_documents"

    type: DocumentType = Field(default=DocumentType.OTHER)
    template_id: UUID = Field(foreign_key="templates.id", index=True)
    file_name: str
    storage_path: str
    sha256: str = Field(index=True)
    size_bytes: int = Field(default=0)

    signed: bool = Field(default=False)
    signed_at: datetime | None = Field(default=None)
    signature_version: SignatureVersion | None = Field(default=None)
    # Fixed at first generation; a later template edit does not change them.
    requires_signature_a: bool = Field(default=True)
    requires_signature_b: bool = Field(default=True)

    signature_data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    digital_signatures: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    source_record: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    rendered_on: date | None = Field(default=None)

    def required_roles(self) -> list[SignerRole]:
        roles: list[SignerRole] = []
        if self.requires_signature_a:
            roles.append(SignerRole.A)
        if self.requires_signature_b:
            roles.append(SignerRole.B)
        return roles

    def requires(self, role: SignerRole) -> bool:
        return self.requires_signature_a if role == SignerRole.A else self.requires_signature_b

    def signed_roles(self) -> set[str]:
        return {str(item.get("signer_role")) for item in self.digital_signatures or []}

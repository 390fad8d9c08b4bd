from contractsign.models.document import (
    GeneratedDocument,
    SignatureVersion,
    SignerRole,
    SigningStatus,
)
from contractsign.models.template import DocumentType, Template

__all__ = [
    "DocumentType",
    "GeneratedDocument",
    "SignatureVersion",
    "SignerRole",
    "SigningStatus",
    "Template",
]

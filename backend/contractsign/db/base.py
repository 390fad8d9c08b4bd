# noqa: F401 to ensure models are imported for metadata
from contractsign.models.document import GeneratedDocument
from contractsign.models.template import Template

__all__ = [
    "GeneratedDocument",
    "Template",
]

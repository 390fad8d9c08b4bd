from __future__ import annotations

from typing import Iterable


class ContractSignError(Exception):
    """Base class for pipeline errors."""


class NotFoundError(ContractSignError):
    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found (ID: {identifier})")


class RenderError(ContractSignError):
    """Template rendering failed; carries every problem found, not only the first."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = [str(item) for item in errors]
        super().__init__("; ".join(self.errors) or "Template rendering failed")


class ConversionError(ContractSignError):
    pass


class CompositionWarning(ContractSignError):
    """Marker location or white-out failed; callers keep the unmodified bytes."""


class SigningError(ContractSignError):
    pass

"""Error taxonomy shared by the reconciliation pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ReconcileError(Exception):
    """Base exception carrying enough context to report a single record."""

    def __init__(
        self,
        message: str,
        record_name: str = "",
        operation: str = "",
        location: str = "",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.record_name = record_name
        self.operation = operation
        self.location = location
        self.cause = cause

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "record": self.record_name,
            "operation": self.operation,
            "location": self.location,
            "message": self.message,
            "cause": str(self.cause) if self.cause else "",
        }


class ParseError(ReconcileError):
    """A single card or delimited row could not be parsed."""

    def __init__(self, message: str, card_index: int = -1, line: str = "", **kwargs: Any):
        super().__init__(message, operation=kwargs.pop("operation", "parse"), **kwargs)
        self.card_index = card_index
        self.line = line


class ValidationError(ReconcileError):
    """A record has no usable content and is excluded from the batch."""


class ResolutionAmbiguity(ReconcileError):
    """A duplicate group needs a decision the caller has not supplied."""


class OperationFailure(ReconcileError):
    """A create, update or delete against the directory failed."""

    def __init__(self, message: str, external_id: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.external_id = external_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["external_id"] = self.external_id
        return payload


class DirectoryError(Exception):
    """Raised by directory collaborators when a remote call fails."""


__all__ = [
    "DirectoryError",
    "OperationFailure",
    "ParseError",
    "ReconcileError",
    "ResolutionAmbiguity",
    "ValidationError",
]

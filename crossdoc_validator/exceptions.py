"""
Custom exception hierarchy for document validation.

Each exception type maps to one category of failure. Most of them are
recovered inside the pipeline and recorded on the ValidationResult as a
finding; only NotInitialized, PersistenceFailure and the lookup, transition
and correction errors of the read and review operations ever reach the
caller.
"""

from __future__ import annotations

from .models import ValidationFinding


class DocumentValidationError(Exception):
    """Base exception for all document validation failures."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict | None = None,
        field: str = "document",
    ):
        self.code = code
        self.field = field
        self.details = details or {}
        super().__init__(message)

    def to_finding(self) -> ValidationFinding:
        """Render this error as a warning/error entry for a ValidationResult."""
        return ValidationFinding(
            code=self.code,
            field=self.field,
            message=str(self),
            details=self.details,
        )


class NotInitialized(DocumentValidationError):
    """The engine was used before start() completed."""

    def __init__(self, message: str = "Validation engine has not been started"):
        super().__init__("NOT_INITIALIZED", message)


class RecognitionFailure(DocumentValidationError):
    """The external text-recognition engine failed or timed out."""

    error_code = "RECOGNITION_FAILED"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(self.error_code, message, details)


class RecognitionUnavailable(RecognitionFailure):
    """No recognition worker became free in time; the engine was never called."""

    error_code = "RECOGNITION_UNAVAILABLE"


class ExtractionGap(DocumentValidationError):
    """An expected field could not be found in the recognized text."""

    def __init__(self, field: str, document_type: str):
        super().__init__(
            "EXTRACTION_GAP",
            f"Expected field '{field}' was not found in the {document_type} text.",
            {"document_type": document_type},
            field=field,
        )


class NormalizationSkip(DocumentValidationError):
    """A field value could not be canonicalized; it is kept raw and not compared."""

    def __init__(self, field: str, value: str, reason: str):
        super().__init__(
            "NORMALIZATION_SKIPPED",
            f"Field '{field}' value '{value}' could not be normalized: {reason}",
            {"raw_value": value, "reason": reason},
            field=field,
        )


class PersistenceFailure(DocumentValidationError):
    """A store write or read failed. Never swallowed: the result would be lost."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PERSISTENCE_FAILED", message, details)


class DocumentNotFound(DocumentValidationError):
    """No document exists with the given id."""

    def __init__(self, document_id: str):
        super().__init__(
            "DOCUMENT_NOT_FOUND",
            f"Document '{document_id}' does not exist.",
            {"document_id": document_id},
        )


class ValidationNotFound(DocumentValidationError):
    """No validation result exists with the given id."""

    def __init__(self, validation_id: str):
        super().__init__(
            "VALIDATION_NOT_FOUND",
            f"Validation result '{validation_id}' does not exist.",
            {"validation_id": validation_id},
        )


class InvalidFieldCorrection(DocumentValidationError):
    """A reviewer-supplied field value is empty or cannot be normalized."""

    def __init__(self, field: str, message: str, details: dict | None = None):
        super().__init__("INVALID_CORRECTION", message, details, field=field)


class InvalidStatusTransition(DocumentValidationError):
    """The requested status change is not allowed by the document state machine."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            "INVALID_STATUS_TRANSITION",
            f"Cannot move a document from '{current}' to '{requested}'.",
            {"current_status": current, "requested_status": requested},
            field="status",
        )

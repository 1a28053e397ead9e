"""
Pydantic models for documents, extracted fields and validation results.

Every field is explicitly typed. Extracted data is a flat set of typed
(field_name, value, confidence) records, never an untyped nested object,
so storage and comparison treat every field the same way.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ─── Enumerations ───────────────────────────────────────────────────


class DocumentType(str, Enum):
    """Kinds of documents a case may contain."""

    ID_CARD = "id_card"
    TAX_ID = "tax_id"
    ADDRESS_PROOF = "address_proof"
    SCHOOL_RECORD = "school_record"
    BIRTH_RECORD = "birth_record"
    OTHER = "other"


class DocumentStatus(str, Enum):
    """Trust verdict of a document."""

    PENDING = "pending"  # Extracted, nothing to judge yet
    VALID = "valid"  # Terminal
    INVALID = "invalid"  # Terminal
    NEEDS_REVIEW = "needs_review"  # Only a reviewer moves it on


class Severity(str, Enum):
    """Severity of a cross-document inconsistency."""

    HIGH = "high"  # Forces needs_review
    MEDIUM = "medium"


class FieldKind(str, Enum):
    """How a field is normalized and compared."""

    NAME = "name"
    DATE = "date"
    NUMERIC_ID = "numeric_id"
    ADDRESS = "address"
    TEXT = "text"


# ─── Findings ───────────────────────────────────────────────────────


class ValidationFinding(BaseModel):
    """A single warning or error entry with a machine-readable code."""

    code: str  # e.g. "EXTRACTION_GAP"
    field: str  # Which field this relates to ("document" for the whole file)
    message: str
    details: dict = Field(default_factory=dict)


# ─── Documents & Fields ─────────────────────────────────────────────


class Document(BaseModel):
    """One submitted file belonging to one case."""

    id: str = Field(default_factory=new_id)
    case_id: str
    document_type: DocumentType
    detected_type: Optional[DocumentType] = None  # Predicted type for "other" uploads
    raw_text: str = ""
    ocr_confidence: float = Field(default=0.0, ge=0, le=100)
    content_hash: str
    extraction_confidence: int = Field(default=0, ge=0, le=100)  # Required fields found × OCR confidence
    declared_data: dict[str, str] = Field(default_factory=dict)  # What the applicant typed into the form
    status: DocumentStatus = DocumentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def effective_type(self) -> DocumentType:
        return self.detected_type or self.document_type


class ExtractedField(BaseModel):
    """One extracted field of one document."""

    document_id: str
    field_name: str
    raw_value: str
    normalized_value: str
    confidence: float = Field(ge=0, le=100)
    source: str = "pattern"  # "pattern", "generic" or "manual"
    comparable: bool = True  # False when normalization was skipped


class FieldWeight(BaseModel):
    """Importance of one field when comparing two document types."""

    field: str
    weight: float = Field(gt=0, le=1)


# ─── Cross-Validation ───────────────────────────────────────────────


class FieldMatch(BaseModel):
    """One field comparison against one sibling document."""

    field: str
    matched: bool
    similarity: float = Field(ge=0, le=1)
    threshold: float
    weight: float
    source: str  # Sibling document id
    source_type: DocumentType


class Inconsistency(BaseModel):
    """An important field that disagrees with one or more siblings."""

    field: str
    severity: Severity
    weight: float
    sources: list[str] = Field(default_factory=list)


class CrossValidationResult(BaseModel):
    """Weighted agreement of a document with the rest of its case."""

    status: DocumentStatus = DocumentStatus.PENDING
    score: float = Field(default=0.0, ge=0, le=1)
    matches: list[FieldMatch] = Field(default_factory=list)
    inconsistencies: list[Inconsistency] = Field(default_factory=list)
    compared_documents: list[str] = Field(default_factory=list)


# ─── Declared Data ──────────────────────────────────────────────────


class DeclaredFieldMatch(BaseModel):
    """One extracted field compared with the value the applicant declared."""

    field: str
    matched: bool
    similarity: float = Field(ge=0, le=1)
    threshold: float
    weight: float
    declared_value: str  # Normalized
    extracted_value: str  # Normalized


class DeclaredDataCheck(BaseModel):
    """Weighted agreement of a document with the applicant's own form data."""

    consistent: bool = True
    score: float = Field(default=0.0, ge=0, le=1)
    match_ratio: float = Field(default=0.0, ge=0, le=1)
    matches: list[DeclaredFieldMatch] = Field(default_factory=list)


# ─── Fraud ──────────────────────────────────────────────────────────


class FraudSignal(BaseModel):
    """A single triggered fraud heuristic."""

    type: str  # e.g. "duplicate_submission"
    confidence: int = Field(ge=0, le=100)
    field: Optional[str] = None
    message: str
    details: dict = Field(default_factory=dict)


class FraudDetection(BaseModel):
    """Aggregate of all triggered fraud heuristics for one document."""

    fraud_detected: bool = False
    confidence: int = Field(default=0, ge=0, le=100)
    type: Optional[str] = None
    details: list[FraudSignal] = Field(default_factory=list)


class TamperingSignal(BaseModel):
    """Output of an optional image-forensics collaborator."""

    tampered: bool
    confidence: int = Field(ge=0, le=100)
    details: dict = Field(default_factory=dict)


# ─── Recognition ────────────────────────────────────────────────────


class RecognitionResult(BaseModel):
    """What the external text-recognition engine returns."""

    text: str
    confidence: float = Field(ge=0, le=100)


# ─── Review & Results ───────────────────────────────────────────────


class ReviewAction(BaseModel):
    """Audit log entry for a manual status override."""

    id: str = Field(default_factory=new_id)
    document_id: str
    validation_id: str  # The result the reviewer acted on
    reviewer_id: str
    previous_status: DocumentStatus
    new_status: DocumentStatus
    notes: Optional[str] = None
    reviewed_at: datetime = Field(default_factory=utcnow)


class FieldCorrection(BaseModel):
    """Audit log entry for one field value typed in by a reviewer."""

    id: str = Field(default_factory=new_id)
    document_id: str
    field_name: str
    previous_value: Optional[str] = None  # None when the field was never extracted
    corrected_value: str
    reviewer_id: str
    notes: Optional[str] = None
    corrected_at: datetime = Field(default_factory=utcnow)


class ProcessOptions(BaseModel):
    """Caller options for process_document."""

    required_fields: Optional[list[str]] = None  # None → per-type defaults
    detect_fraud: bool = True
    declared_data: dict[str, str] = Field(default_factory=dict)  # field name → value typed by the applicant


class ValidationResult(BaseModel):
    """The auditable output of one validation run (or one manual override)."""

    id: str = Field(default_factory=new_id)
    document_id: str
    case_id: str
    document_type: DocumentType
    detected_type: Optional[DocumentType] = None
    status: DocumentStatus
    confidence: int = Field(ge=0, le=100)
    ocr_confidence: float = Field(default=0.0, ge=0, le=100)
    extracted_data: dict[str, str] = Field(default_factory=dict)
    warnings: list[ValidationFinding] = Field(default_factory=list)
    errors: list[ValidationFinding] = Field(default_factory=list)
    cross_validation: CrossValidationResult = Field(default_factory=CrossValidationResult)
    fraud_detection: FraudDetection = Field(default_factory=FraudDetection)
    declared_data: Optional[DeclaredDataCheck] = None  # None when nothing declared was comparable
    content_hash: str = ""
    review: Optional[ReviewAction] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ValidationMetrics(BaseModel):
    """Document counts per status and the share settled as valid."""

    case_id: Optional[str] = None  # None → all cases
    total_documents: int = 0
    by_status: dict[DocumentStatus, int] = Field(default_factory=dict)
    verification_rate: float = 0.0  # Percent of documents that are valid

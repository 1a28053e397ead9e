"""
Fraud heuristics — the "paranoid" layer that runs next to cross-validation.

Each heuristic:
  - Takes a FraudContext (the document, its normalized fields, duplicates, ...)
  - Returns a list of FraudSignal objects (empty = nothing suspicious)
  - Is independently testable
  - Is isolated: if it blows up (e.g. an unparsable date) that means "no
    signal", never a failed pipeline

Signal confidences are summed and capped at 100:
  > 80   hard signal → error, forces needs_review
  60-80  soft signal → warning only
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable

from .models import (
    Document,
    DocumentType,
    FraudDetection,
    FraudSignal,
    TamperingSignal,
    ValidationFinding,
)

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────

DUPLICATE_CONFIDENCE = 95
TAX_ID_LENGTH_CONFIDENCE = 30
REPEATED_DIGITS_CONFIDENCE = 50
TAX_ID_CHECKSUM_CONFIDENCE = 40
AGE_RANGE_CONFIDENCE = 20
FUTURE_ISSUE_DATE_CONFIDENCE = 50
ISSUE_BEFORE_BIRTH_CONFIDENCE = 70

HARD_FRAUD_THRESHOLD = 80  # Strictly above → error
SOFT_FRAUD_THRESHOLD = 60  # At or above → warning

TAX_ID_DIGITS = 11
MIN_AGE, MAX_AGE = 16, 120

NUMERIC_ID_FIELDS: tuple[str, ...] = ("tax_id", "id_number", "registration_number")

# Children legitimately appear on these, so the age range does not apply
AGE_EXEMPT_TYPES: frozenset[DocumentType] = frozenset({
    DocumentType.BIRTH_RECORD,
    DocumentType.SCHOOL_RECORD,
})

DUPLICATE_SCOPE_OTHER_CASES = "other_cases"
DUPLICATE_SCOPE_ANY = "any"


# ─── Context ────────────────────────────────────────────────────────


@dataclass
class FraudContext:
    """Everything a heuristic may look at."""

    document: Document
    fields: dict[str, str]  # Comparable fields: name → normalized value
    duplicates: list[Document] = field(default_factory=list)
    tampering: TamperingSignal | None = None
    today: date = field(default_factory=date.today)


Heuristic = Callable[[FraudContext], list[FraudSignal]]


# ─── Orchestrator ────────────────────────────────────────────────────


def detect_fraud(context: FraudContext) -> FraudDetection:
    """Run ALL heuristics and aggregate their signals."""
    signals: list[FraudSignal] = []
    for heuristic in HEURISTICS:
        try:
            signals.extend(heuristic(context))
        except Exception as e:
            logger.warning(
                "Fraud heuristic %s failed on document %s, treated as no signal: %s",
                heuristic.__name__, context.document.id, e,
            )
    return aggregate_signals(signals)


def aggregate_signals(signals: list[FraudSignal]) -> FraudDetection:
    """Sum confidences (capped at 100) and pick the strongest signal as the type."""
    if not signals:
        return FraudDetection()

    confidence = min(100, sum(s.confidence for s in signals))
    strongest = max(signals, key=lambda s: s.confidence)
    return FraudDetection(
        fraud_detected=confidence >= SOFT_FRAUD_THRESHOLD,
        confidence=confidence,
        type=strongest.type,
        details=signals,
    )


def fraud_findings(detection: FraudDetection) -> tuple[list[ValidationFinding], list[ValidationFinding]]:
    """Turn an aggregate into (warnings, errors) for the ValidationResult."""
    details = {
        "confidence": detection.confidence,
        "signals": [s.type for s in detection.details],
    }
    if detection.confidence > HARD_FRAUD_THRESHOLD:
        return [], [
            ValidationFinding(
                code="FRAUD_SUSPECTED",
                field="document",
                message=(
                    f"Fraud heuristics triggered with confidence {detection.confidence} "
                    f"(strongest: {detection.type}). Manual review required."
                ),
                details=details,
            )
        ]
    if detection.confidence >= SOFT_FRAUD_THRESHOLD:
        return [
            ValidationFinding(
                code="FRAUD_POSSIBLE",
                field="document",
                message=(
                    f"Fraud heuristics triggered with confidence {detection.confidence} "
                    f"(strongest: {detection.type})."
                ),
                details=details,
            )
        ], []
    return [], []


def find_duplicates(
    document: Document, candidates: Iterable[Document], scope: str = DUPLICATE_SCOPE_OTHER_CASES
) -> list[Document]:
    """Other documents with the same content hash that count as duplicates."""
    duplicates = []
    for other in candidates:
        if other.id == document.id or other.content_hash != document.content_hash:
            continue
        if scope == DUPLICATE_SCOPE_OTHER_CASES and other.case_id == document.case_id:
            continue
        duplicates.append(other)
    return duplicates


# ─── Individual Heuristics ───────────────────────────────────────────


def check_duplicate_submission(context: FraudContext) -> list[FraudSignal]:
    """The exact same bytes were already submitted elsewhere."""
    if not context.duplicates:
        return []
    return [
        FraudSignal(
            type="duplicate_submission",
            confidence=DUPLICATE_CONFIDENCE,
            message=(
                f"Identical file content was already submitted "
                f"({len(context.duplicates)} earlier document(s))."
            ),
            details={
                "content_hash": context.document.content_hash,
                "documents": [d.id for d in context.duplicates],
                "cases": sorted({d.case_id for d in context.duplicates}),
            },
        )
    ]


def check_tax_id_length(context: FraudContext) -> list[FraudSignal]:
    """A tax id has exactly 11 digits."""
    tax_id = context.fields.get("tax_id")
    if tax_id is None or len(tax_id) == TAX_ID_DIGITS:
        return []
    return [
        FraudSignal(
            type="invalid_id_format",
            confidence=TAX_ID_LENGTH_CONFIDENCE,
            field="tax_id",
            message=f"Tax id has {len(tax_id)} digits, expected {TAX_ID_DIGITS}.",
            details={"tax_id": tax_id, "digits": len(tax_id)},
        )
    ]


def check_repeated_digits(context: FraudContext) -> list[FraudSignal]:
    """'111.111.111-11' passes a naive format check but is never a real id."""
    signals = []
    for field_name in NUMERIC_ID_FIELDS:
        value = context.fields.get(field_name)
        if value and value.isdigit() and len(value) > 1 and len(set(value)) == 1:
            signals.append(
                FraudSignal(
                    type="invalid_id_format",
                    confidence=REPEATED_DIGITS_CONFIDENCE,
                    field=field_name,
                    message=f"{field_name} '{value}' is a single repeated digit.",
                    details={field_name: value},
                )
            )
    return signals


def check_tax_id_checksum(context: FraudContext) -> list[FraudSignal]:
    """The two trailing check digits of a tax id must verify."""
    tax_id = context.fields.get("tax_id")
    if (
        tax_id is None
        or not re.fullmatch(r"\d{11}", tax_id)
        or len(set(tax_id)) == 1  # Reported by check_repeated_digits
        or tax_id_checksum_ok(tax_id)
    ):
        return []
    return [
        FraudSignal(
            type="invalid_id_checksum",
            confidence=TAX_ID_CHECKSUM_CONFIDENCE,
            field="tax_id",
            message=f"Tax id '{tax_id}' fails its check-digit verification.",
            details={"tax_id": tax_id},
        )
    ]


def check_age_range(context: FraudContext) -> list[FraudSignal]:
    """Holder's age derived from the birth date must be plausible."""
    if context.document.effective_type in AGE_EXEMPT_TYPES:
        return []
    birth = context.fields.get("birth_date")
    if birth is None:
        return []

    age = _age_on(date.fromisoformat(birth), context.today)
    if MIN_AGE <= age <= MAX_AGE:
        return []
    return [
        FraudSignal(
            type="implausible_age",
            confidence=AGE_RANGE_CONFIDENCE,
            field="birth_date",
            message=f"Derived age {age} is outside [{MIN_AGE}, {MAX_AGE}].",
            details={"birth_date": birth, "age": age},
        )
    ]


def check_issue_date(context: FraudContext) -> list[FraudSignal]:
    """An issue date can be neither in the future nor before the holder was born."""
    issued_raw = context.fields.get("issue_date")
    if issued_raw is None:
        return []
    issued = date.fromisoformat(issued_raw)

    signals = []
    if issued > context.today:
        signals.append(
            FraudSignal(
                type="date_inconsistency",
                confidence=FUTURE_ISSUE_DATE_CONFIDENCE,
                field="issue_date",
                message=f"Issue date ({issued}) is in the future.",
                details={"issue_date": str(issued), "today": str(context.today)},
            )
        )

    birth_raw = context.fields.get("birth_date")
    if birth_raw is not None:
        birth = date.fromisoformat(birth_raw)
        if issued < birth:
            signals.append(
                FraudSignal(
                    type="date_inconsistency",
                    confidence=ISSUE_BEFORE_BIRTH_CONFIDENCE,
                    field="issue_date",
                    message=f"Issue date ({issued}) is before the birth date ({birth}).",
                    details={
                        "issue_date": str(issued),
                        "birth_date": str(birth),
                        "gap_days": (birth - issued).days,
                    },
                )
            )
    return signals


def check_image_tampering(context: FraudContext) -> list[FraudSignal]:
    """Relay the optional image-forensics signal."""
    tampering = context.tampering
    if tampering is None or not tampering.tampered:
        return []
    return [
        FraudSignal(
            type="image_tampering",
            confidence=tampering.confidence,
            message="Image forensics reported signs of tampering.",
            details=tampering.details,
        )
    ]


HEURISTICS: tuple[Heuristic, ...] = (
    check_duplicate_submission,
    check_tax_id_length,
    check_repeated_digits,
    check_tax_id_checksum,
    check_age_range,
    check_issue_date,
    check_image_tampering,
)


# ─── Helpers ─────────────────────────────────────────────────────────


def tax_id_checksum_ok(tax_id: str) -> bool:
    """Verify both check digits of an 11-digit tax id (CPF algorithm)."""
    digits = [int(ch) for ch in tax_id]
    for position in (9, 10):
        total = sum(d * (position + 1 - i) for i, d in enumerate(digits[:position]))
        expected = (total * 10) % 11 % 10
        if digits[position] != expected:
            return False
    return True


def _age_on(birth: date, today: date) -> int:
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years

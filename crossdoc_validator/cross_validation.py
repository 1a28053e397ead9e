"""
Cross-validation — does this document agree with the rest of its case?

Algorithm:
  1. Take a snapshot of every other document in the case with its fields.
  2. For each sibling, look up which fields are comparable between the two
     document types (and how much each counts). No config → skip sibling.
  3. Compare each comparable field present on BOTH sides; accumulate
     weight × similarity and weight. Missing fields neither help nor hurt.
  4. Record every comparison as a match entry.
  5. A failed comparison on an important field (weight > 0.3) becomes an
     inconsistency ("high" above 0.4), merged per field across siblings.
  6. score = Σ weight × similarity / Σ weight  (0 when nothing was comparable)
  7. score ≥ 0.85 → valid, ≥ 0.70 → needs_review, else invalid.
     Any high inconsistency forces needs_review. Nothing comparable → pending.

The same inputs always give the same score and status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .fields import comparable_fields, match_threshold
from .models import (
    CrossValidationResult,
    Document,
    DocumentStatus,
    DocumentType,
    ExtractedField,
    FieldMatch,
    Inconsistency,
    Severity,
)
from .normalizer import comparable_values
from .similarity import similarity

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────

VALID_SCORE = 0.85
REVIEW_SCORE = 0.70
INCONSISTENCY_MIN_WEIGHT = 0.3  # Mismatches above this weight are reported
HIGH_SEVERITY_WEIGHT = 0.4  # ...and above this one they force a review


# ─── Data Structures ────────────────────────────────────────────────


@dataclass
class Sibling:
    """Another document of the same case, with its comparable fields."""

    document: Document
    fields: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, document: Document, fields: list[ExtractedField]) -> Sibling:
        return cls(
            document=document,
            fields=comparable_values(fields),
        )


# ─── Public API ──────────────────────────────────────────────────────


def cross_validate(
    document_type: DocumentType,
    fields: dict[str, str],
    siblings: list[Sibling],
) -> CrossValidationResult:
    """Score a document's comparable fields against its siblings.

    Args:
        document_type: Effective type of the document being validated.
        fields: Its comparable normalized fields (field name → value).
        siblings: The other documents of the case.
    """
    numerator = 0.0
    denominator = 0.0
    matches: list[FieldMatch] = []
    inconsistencies: dict[str, Inconsistency] = {}
    compared: list[str] = []

    ordered = sorted(siblings, key=lambda s: (s.document.created_at, s.document.id))
    for sibling in ordered:
        sibling_type = sibling.document.effective_type
        config = comparable_fields(document_type, sibling_type)
        if config is None:
            logger.debug(
                "No comparable fields between %s and %s, skipping %s",
                document_type.value, sibling_type.value, sibling.document.id,
            )
            continue

        compared_any = False
        for weighted in config:
            ours = fields.get(weighted.field)
            theirs = sibling.fields.get(weighted.field)
            if not ours or not theirs:
                continue

            compared_any = True
            score = max(0.0, min(1.0, similarity(weighted.field, ours, theirs)))
            threshold = match_threshold(weighted.field)
            matched = score >= threshold

            numerator += weighted.weight * score
            denominator += weighted.weight
            matches.append(
                FieldMatch(
                    field=weighted.field,
                    matched=matched,
                    similarity=round(score, 4),
                    threshold=threshold,
                    weight=weighted.weight,
                    source=sibling.document.id,
                    source_type=sibling_type,
                )
            )

            if not matched and weighted.weight > INCONSISTENCY_MIN_WEIGHT:
                _record_inconsistency(inconsistencies, weighted.field, weighted.weight, sibling.document.id)

        if compared_any:
            compared.append(sibling.document.id)

    score = round(numerator / denominator, 6) if denominator > 0 else 0.0
    merged = list(inconsistencies.values())

    return CrossValidationResult(
        status=decide_status(score, denominator > 0, merged),
        score=score,
        matches=matches,
        inconsistencies=merged,
        compared_documents=compared,
    )


def decide_status(
    score: float, comparable: bool, inconsistencies: list[Inconsistency]
) -> DocumentStatus:
    """Map a weighted score to a verdict."""
    if not comparable:
        return DocumentStatus.PENDING  # Nothing to judge yet
    if any(i.severity is Severity.HIGH for i in inconsistencies):
        return DocumentStatus.NEEDS_REVIEW
    if score >= VALID_SCORE:
        return DocumentStatus.VALID
    if score >= REVIEW_SCORE:
        return DocumentStatus.NEEDS_REVIEW
    return DocumentStatus.INVALID


# ─── Internal Helpers ────────────────────────────────────────────────


def _record_inconsistency(
    inconsistencies: dict[str, Inconsistency], field_name: str, weight: float, source: str
) -> None:
    """Merge repeated mismatches of one field into a single entry."""
    severity = Severity.HIGH if weight > HIGH_SEVERITY_WEIGHT else Severity.MEDIUM
    existing = inconsistencies.get(field_name)
    if existing is None:
        inconsistencies[field_name] = Inconsistency(
            field=field_name, severity=severity, weight=weight, sources=[source]
        )
        return

    if source not in existing.sources:
        existing.sources.append(source)
    if weight > existing.weight:
        existing.weight = weight
    if severity is Severity.HIGH:
        existing.severity = Severity.HIGH

"""
Declared-data check — compares what was read off a document with what the
applicant typed into the registration form.

Only fields present on both sides are compared. Each comparison uses the
same per-kind similarity and threshold as cross-validation, weighted per
document type. The document disagrees with its applicant when fewer than
70% of the compared fields match or the weighted score drops below 0.75;
that sends it to review, it never makes it invalid on its own.
"""

from __future__ import annotations

import logging

from .exceptions import NormalizationSkip
from .fields import declared_weight, match_threshold
from .models import DeclaredDataCheck, DeclaredFieldMatch, DocumentType, ValidationFinding
from .normalizer import normalize_value
from .similarity import similarity

logger = logging.getLogger(__name__)

MIN_MATCH_RATIO = 0.7
MIN_SCORE = 0.75

# Finding codes this module produces; revalidation recomputes them
DECLARED_DATA_CODES: frozenset[str] = frozenset({"DECLARED_DATA_MISMATCH", "DECLARED_DATA_UNREADABLE"})


def check_declared_data(
    document_type: DocumentType,
    fields: dict[str, str],
    declared: dict[str, str],
) -> tuple[DeclaredDataCheck | None, list[ValidationFinding]]:
    """Score a document's comparable fields against the applicant's declared values.

    Args:
        document_type: Effective type of the document (selects the weights).
        fields: field name → normalized value, comparable fields only.
        declared: field name → value as the applicant typed it.

    Returns:
        The check (None when no declared field was comparable) and one
        warning per mismatched or unreadable declared value.
    """
    matches: list[DeclaredFieldMatch] = []
    findings: list[ValidationFinding] = []

    for field_name, raw_declared in declared.items():
        ours = fields.get(field_name)
        if ours is None:
            continue
        try:
            theirs = normalize_value(field_name, raw_declared)
        except NormalizationSkip as skip:
            findings.append(
                ValidationFinding(
                    code="DECLARED_DATA_UNREADABLE",
                    field=field_name,
                    message=f"Declared value for '{field_name}' could not be compared: {skip.details['reason']}",
                    details={"declared_value": raw_declared},
                )
            )
            continue

        score = max(0.0, min(1.0, similarity(field_name, ours, theirs)))
        threshold = match_threshold(field_name)
        match = DeclaredFieldMatch(
            field=field_name,
            matched=score >= threshold,
            similarity=round(score, 4),
            threshold=threshold,
            weight=declared_weight(document_type, field_name),
            declared_value=theirs,
            extracted_value=ours,
        )
        matches.append(match)
        if not match.matched:
            findings.append(
                ValidationFinding(
                    code="DECLARED_DATA_MISMATCH",
                    field=field_name,
                    message=(
                        f"Extracted '{field_name}' differs from the declared value "
                        f"(similarity {match.similarity:.2f} < {threshold:.2f})."
                    ),
                    details={"declared_value": theirs, "extracted_value": ours},
                )
            )

    if not matches:
        return None, findings

    total_weight = sum(m.weight for m in matches)
    score = sum(m.similarity * m.weight for m in matches) / total_weight
    match_ratio = sum(1 for m in matches if m.matched) / len(matches)
    check = DeclaredDataCheck(
        consistent=match_ratio >= MIN_MATCH_RATIO and score >= MIN_SCORE,
        score=round(score, 4),
        match_ratio=round(match_ratio, 4),
        matches=matches,
    )
    if not check.consistent:
        logger.info(
            "Declared data disagrees with %s document: score %.2f, %d/%d fields matched",
            document_type.value, check.score, sum(m.matched for m in matches), len(matches),
        )
    return check, findings

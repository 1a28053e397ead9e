"""
Document status state machine.

    pending ──(validation run)──▶ pending | valid | invalid | needs_review
    needs_review ──(reviewer)──▶ valid | invalid
    valid / invalid ──(reviewer override)──▶ valid | invalid

A validation run can only move a document out of "pending". Everything
else takes an explicit, logged reviewer action. A pending document has
not been judged yet, so there is nothing for a reviewer to settle.
"""

from __future__ import annotations

from .exceptions import InvalidStatusTransition
from .models import DocumentStatus

AUTOMATIC_SOURCES: frozenset[DocumentStatus] = frozenset({DocumentStatus.PENDING})

REVIEW_SOURCES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.NEEDS_REVIEW,
    DocumentStatus.VALID,
    DocumentStatus.INVALID,
})

REVIEW_TARGETS: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.VALID,
    DocumentStatus.INVALID,
})


def can_apply_automatically(current: DocumentStatus) -> bool:
    """Whether a validation run may overwrite the current status."""
    return current in AUTOMATIC_SOURCES


def check_review_transition(current: DocumentStatus, requested: DocumentStatus) -> None:
    """Reviewers may only settle a judged document as valid or invalid.

    Raises:
        InvalidStatusTransition: the document is still pending, or the
            requested status is not a review outcome.
    """
    if current not in REVIEW_SOURCES or requested not in REVIEW_TARGETS:
        raise InvalidStatusTransition(current.value, requested.value)


def combine_verdicts(
    cross_validation: DocumentStatus, needs_review: bool
) -> DocumentStatus:
    """Final status of a run: any review request wins over the computed verdict."""
    if needs_review:
        return DocumentStatus.NEEDS_REVIEW
    return cross_validation

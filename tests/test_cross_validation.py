"""
Cross-validation and status state machine tests.

Weights, thresholds and verdicts are pure functions of their inputs; no
store is involved here.

Run: pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from crossdoc_validator.cross_validation import Sibling, cross_validate, decide_status
from crossdoc_validator.exceptions import InvalidStatusTransition
from crossdoc_validator.fields import COMPARABLE_FIELDS, comparable_fields
from crossdoc_validator.models import (
    Document,
    DocumentStatus,
    DocumentType,
    ExtractedField,
    Inconsistency,
    Severity,
)
from crossdoc_validator.status import (
    can_apply_automatically,
    check_review_transition,
    combine_verdicts,
)

_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _make_sibling(
    document_type: DocumentType, fields: dict[str, str], **overrides: Any
) -> Sibling:
    """Factory for sibling documents with already-normalized fields."""
    kwargs: dict[str, Any] = {
        "case_id": "case-1",
        "document_type": document_type,
        "content_hash": "0" * 64,
        "created_at": _T0,
    }
    kwargs.update(overrides)
    return Sibling(document=Document(**kwargs), fields=fields)


ID_FIELDS = {"name": "joao silva", "birth_date": "1990-01-01", "tax_id": "52998224725"}


# ═══════════════════════════════════════════════════════════════════════
# COMPARABLE FIELD TABLE
# ═══════════════════════════════════════════════════════════════════════


class TestComparableFields:
    def test_weights_are_asymmetric(self):
        id_vs_tax = {w.field: w.weight for w in comparable_fields(DocumentType.ID_CARD, DocumentType.TAX_ID)}
        tax_vs_id = {w.field: w.weight for w in comparable_fields(DocumentType.TAX_ID, DocumentType.ID_CARD)}
        assert id_vs_tax == {"name": 0.5, "birth_date": 0.3, "tax_id": 0.2}
        assert tax_vs_id == {"tax_id": 0.5, "name": 0.3, "birth_date": 0.2}

    def test_missing_pair_is_none(self):
        assert comparable_fields(DocumentType.ADDRESS_PROOF, DocumentType.BIRTH_RECORD) is None
        assert comparable_fields(DocumentType.OTHER, DocumentType.ID_CARD) is None

    def test_weights_per_pair_sum_to_at_most_one(self):
        for weights in COMPARABLE_FIELDS.values():
            assert sum(w.weight for w in weights) <= 1.0 + 1e-9


# ═══════════════════════════════════════════════════════════════════════
# CROSS-VALIDATION SCORE
# ═══════════════════════════════════════════════════════════════════════


class TestCrossValidation:
    def test_tax_id_mismatch_is_weighted_not_flagged(self):
        sibling = _make_sibling(
            DocumentType.TAX_ID,
            {"name": "joao silva", "birth_date": "1990-01-01", "tax_id": "12345678909"},
        )
        result = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [sibling])
        assert result.score == pytest.approx(0.8)
        assert result.status is DocumentStatus.NEEDS_REVIEW
        assert result.inconsistencies == []
        tax_match = next(m for m in result.matches if m.field == "tax_id")
        assert tax_match.matched is False
        assert tax_match.similarity == 0.0

    def test_reverse_direction_uses_its_own_weights(self):
        ours = {"name": "joao silva", "birth_date": "1990-01-01", "tax_id": "12345678909"}
        sibling = _make_sibling(DocumentType.ID_CARD, ID_FIELDS)
        result = cross_validate(DocumentType.TAX_ID, ours, [sibling])
        assert result.score == pytest.approx(0.5)
        assert result.status is DocumentStatus.NEEDS_REVIEW  # High inconsistency on tax_id
        assert result.inconsistencies[0].field == "tax_id"
        assert result.inconsistencies[0].severity is Severity.HIGH

    def test_all_fields_match(self):
        sibling = _make_sibling(DocumentType.TAX_ID, dict(ID_FIELDS))
        result = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [sibling])
        assert result.score == 1.0
        assert result.status is DocumentStatus.VALID
        assert result.compared_documents == [sibling.document.id]

    def test_no_siblings_stays_pending(self):
        result = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [])
        assert result.score == 0.0
        assert result.status is DocumentStatus.PENDING
        assert result.matches == []

    def test_unconfigured_pair_is_skipped(self):
        sibling = _make_sibling(DocumentType.BIRTH_RECORD, {"name": "joao silva"})
        result = cross_validate(DocumentType.ADDRESS_PROOF, {"name": "joao silva"}, [sibling])
        assert result.status is DocumentStatus.PENDING
        assert result.compared_documents == []

    def test_fields_missing_on_either_side_are_ignored(self):
        sibling = _make_sibling(DocumentType.TAX_ID, {"name": "joao silva"})
        result = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [sibling])
        assert [m.field for m in result.matches] == ["name"]
        assert result.score == 1.0

    def test_total_name_mismatch_needs_review(self):
        sibling = _make_sibling(DocumentType.ADDRESS_PROOF, {"name": "carlos pereira"})
        result = cross_validate(DocumentType.ID_CARD, {"name": "joao silva"}, [sibling])
        assert result.score == 0.0
        assert result.status is DocumentStatus.NEEDS_REVIEW  # name weight 1.0 is a high inconsistency

    def test_low_score_without_high_inconsistency_is_invalid(self):
        sibling = _make_sibling(
            DocumentType.ID_CARD,
            {"id_number": "123", "name": "carlos pereira", "birth_date": "1985-05-05"},
        )
        ours = {"id_number": "123", "name": "joao silva", "birth_date": "1990-01-01"}
        result = cross_validate(DocumentType.ID_CARD, ours, [sibling])
        assert result.score == pytest.approx(0.4)
        assert result.status is DocumentStatus.INVALID

    def test_medium_inconsistency_is_reported_without_forcing_review(self):
        sibling = _make_sibling(
            DocumentType.ID_CARD,
            {"name": "carlos pereira", "birth_date": "2015-07-02", "mother_name": "carla souza", "father_name": "paulo lima"},
        )
        ours = {"name": "pedro lima", "birth_date": "2015-07-02", "mother_name": "carla souza", "father_name": "paulo lima"}
        result = cross_validate(DocumentType.BIRTH_RECORD, ours, [sibling])
        assert result.score == pytest.approx(0.65)
        assert result.inconsistencies[0].severity is Severity.MEDIUM
        assert result.status is DocumentStatus.INVALID

    def test_mismatch_at_weight_point_three_is_not_reported(self):
        # id card vs id card: name weight 0.3 is not above 0.3, birth_date 0.3 neither
        sibling = _make_sibling(
            DocumentType.ID_CARD,
            {"id_number": "123", "name": "carlos pereira", "birth_date": "1990-01-01"},
        )
        ours = {"id_number": "123", "name": "joao silva", "birth_date": "1990-01-01"}
        result = cross_validate(DocumentType.ID_CARD, ours, [sibling])
        assert result.score == pytest.approx(0.7)
        assert result.inconsistencies == []
        assert result.status is DocumentStatus.NEEDS_REVIEW

    def test_inconsistencies_merge_per_field(self):
        first = _make_sibling(DocumentType.TAX_ID, {"name": "carlos pereira"}, id="a")
        second = _make_sibling(DocumentType.TAX_ID, {"name": "pedro souza"}, id="b")
        result = cross_validate(DocumentType.ID_CARD, {"name": "joao silva"}, [second, first])
        assert len(result.inconsistencies) == 1
        assert result.inconsistencies[0].sources == ["a", "b"]

    def test_siblings_processed_in_creation_order(self):
        older = _make_sibling(DocumentType.TAX_ID, {"name": "joao silva"}, id="z", created_at=_T0)
        newer = _make_sibling(
            DocumentType.TAX_ID, {"name": "joao silva"}, id="a", created_at=_T0 + timedelta(minutes=1)
        )
        result = cross_validate(DocumentType.ID_CARD, {"name": "joao silva"}, [newer, older])
        assert result.compared_documents == ["z", "a"]

    def test_detected_type_drives_the_comparison(self):
        sibling = _make_sibling(
            DocumentType.OTHER, {"name": "joao silva"}, detected_type=DocumentType.TAX_ID
        )
        result = cross_validate(DocumentType.ID_CARD, {"name": "joao silva"}, [sibling])
        assert result.matches[0].source_type is DocumentType.TAX_ID

    def test_deterministic(self):
        sibling = _make_sibling(DocumentType.TAX_ID, {"name": "joao silveira", "tax_id": "1"})
        first = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [sibling])
        second = cross_validate(DocumentType.ID_CARD, ID_FIELDS, [sibling])
        assert first == second


class TestSiblingSnapshot:
    def test_non_comparable_fields_are_dropped(self):
        document = Document(case_id="c", document_type=DocumentType.ID_CARD, content_hash="h")
        fields = [
            ExtractedField(document_id=document.id, field_name="name", raw_value="Ana",
                           normalized_value="ana", confidence=80),
            ExtractedField(document_id=document.id, field_name="birth_date", raw_value="ontem",
                           normalized_value="ontem", confidence=70, comparable=False),
        ]
        assert Sibling.from_snapshot(document, fields).fields == {"name": "ana"}


class TestDecideStatus:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (0.85, DocumentStatus.VALID),
            (0.849, DocumentStatus.NEEDS_REVIEW),
            (0.70, DocumentStatus.NEEDS_REVIEW),
            (0.699, DocumentStatus.INVALID),
        ],
    )
    def test_thresholds(self, score, expected):
        assert decide_status(score, True, []) is expected

    def test_high_inconsistency_forces_review(self):
        high = Inconsistency(field="name", severity=Severity.HIGH, weight=0.5, sources=["x"])
        assert decide_status(0.95, True, [high]) is DocumentStatus.NEEDS_REVIEW

    def test_nothing_comparable_is_pending(self):
        assert decide_status(0.0, False, []) is DocumentStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════
# STATUS STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════


class TestStatusMachine:
    def test_only_pending_moves_automatically(self):
        assert can_apply_automatically(DocumentStatus.PENDING)
        for status in (DocumentStatus.VALID, DocumentStatus.INVALID, DocumentStatus.NEEDS_REVIEW):
            assert not can_apply_automatically(status)

    @pytest.mark.parametrize(
        "current", [DocumentStatus.NEEDS_REVIEW, DocumentStatus.VALID, DocumentStatus.INVALID]
    )
    @pytest.mark.parametrize("target", [DocumentStatus.VALID, DocumentStatus.INVALID])
    def test_reviewer_may_settle_judged_documents(self, current, target):
        check_review_transition(current, target)

    @pytest.mark.parametrize("target", [DocumentStatus.VALID, DocumentStatus.INVALID])
    def test_pending_document_cannot_be_reviewed(self, target):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            check_review_transition(DocumentStatus.PENDING, target)
        assert exc_info.value.details["current_status"] == "pending"

    @pytest.mark.parametrize("target", [DocumentStatus.PENDING, DocumentStatus.NEEDS_REVIEW])
    def test_reviewer_cannot_reopen(self, target):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            check_review_transition(DocumentStatus.NEEDS_REVIEW, target)
        assert exc_info.value.details["requested_status"] == target.value

    def test_review_request_wins(self):
        assert combine_verdicts(DocumentStatus.VALID, needs_review=True) is DocumentStatus.NEEDS_REVIEW
        assert combine_verdicts(DocumentStatus.VALID, needs_review=False) is DocumentStatus.VALID
        assert combine_verdicts(DocumentStatus.PENDING, needs_review=False) is DocumentStatus.PENDING

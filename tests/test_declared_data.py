"""
Declared-data check tests: extracted fields vs. the applicant's form values.

Run: pytest tests/ -v
"""

from __future__ import annotations

import pytest

from crossdoc_validator.declared_data import check_declared_data
from crossdoc_validator.fields import DEFAULT_DECLARED_WEIGHT, declared_weight
from crossdoc_validator.models import DocumentType

ADDRESS_FIELDS = {
    "name": "joao pereira",
    "address": "rua das flores 123 centro",
    "zip_code": "01310100",
}


class TestDeclaredWeights:
    def test_per_type_weights(self):
        assert declared_weight(DocumentType.TAX_ID, "tax_id") == 0.5
        assert declared_weight(DocumentType.ADDRESS_PROOF, "address") == 0.5

    def test_unlisted_field_and_type_use_default(self):
        assert declared_weight(DocumentType.ID_CARD, "mother_name") == DEFAULT_DECLARED_WEIGHT
        assert declared_weight(DocumentType.SCHOOL_RECORD, "name") == DEFAULT_DECLARED_WEIGHT


class TestCheckDeclaredData:
    def test_declared_values_are_normalized_before_comparing(self):
        check, findings = check_declared_data(
            DocumentType.ADDRESS_PROOF,
            ADDRESS_FIELDS,
            {"name": "João Pereira", "zip_code": "01310-100"},
        )
        assert findings == []
        assert check.consistent is True
        assert check.score == 1.0
        assert [m.declared_value for m in check.matches] == ["joao pereira", "01310100"]

    def test_score_is_weighted_per_document_type(self):
        check, findings = check_declared_data(
            DocumentType.ADDRESS_PROOF,
            ADDRESS_FIELDS,
            {"name": "João Pereira", "zip_code": "99999-999"},
        )
        # name 0.3 matched, zip_code 0.2 missed
        assert check.score == pytest.approx(0.6)
        assert check.match_ratio == 0.5
        assert check.consistent is False
        assert [(f.code, f.field) for f in findings] == [("DECLARED_DATA_MISMATCH", "zip_code")]
        assert findings[0].details == {"declared_value": "99999999", "extracted_value": "01310100"}

    def test_match_ratio_and_score_both_required(self):
        fields = {"name": "maria silva santos", "id_number": "123456789", "birth_date": "1990-03-15"}
        declared = {"name": "Maria Souza", "id_number": "12.345.678-9", "birth_date": "15/03/1990"}
        check, findings = check_declared_data(DocumentType.ID_CARD, fields, declared)
        assert check.score >= 0.75
        assert check.match_ratio == pytest.approx(2 / 3, abs=1e-4)
        assert check.consistent is False
        assert [f.field for f in findings] == ["name"]

    def test_nothing_comparable(self):
        check, findings = check_declared_data(DocumentType.ID_CARD, {"name": "ana"}, {"tax_id": "1"})
        assert check is None
        assert findings == []

    def test_unreadable_declared_value(self):
        check, findings = check_declared_data(
            DocumentType.ID_CARD, {"birth_date": "1990-03-15"}, {"birth_date": "sometime in march"}
        )
        assert check is None
        assert [f.code for f in findings] == ["DECLARED_DATA_UNREADABLE"]
        assert findings[0].details == {"declared_value": "sometime in march"}

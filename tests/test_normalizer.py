"""
Normalization and similarity tests.

Run: pytest tests/ -v
"""

from __future__ import annotations

import pytest

from crossdoc_validator.exceptions import NormalizationSkip
from crossdoc_validator.normalizer import (
    comparable_values,
    normalize_address,
    normalize_date,
    normalize_fields,
    normalize_name,
    normalize_numeric_id,
    normalize_value,
)
from crossdoc_validator.similarity import (
    address_similarity,
    edit_similarity,
    name_similarity,
    similarity,
)


# ═══════════════════════════════════════════════════════════════════════
# NORMALIZER
# ═══════════════════════════════════════════════════════════════════════


class TestNameNormalization:
    def test_accents_and_linking_words(self):
        assert normalize_name("joão da silva") == "joao silva"
        assert normalize_name("Joao Silva") == "joao silva"

    def test_punctuation_and_spacing(self):
        assert normalize_name("  MARIA  dos   Santos-Lima ") == "maria santos lima"

    def test_only_linking_words_is_skipped(self):
        with pytest.raises(ValueError):
            normalize_name("de da")


class TestDateNormalization:
    @pytest.mark.parametrize(
        "raw",
        ["15/03/1990", "15.03.1990", "15-03-1990", "1990-03-15"],
    )
    def test_supported_formats(self, raw):
        assert normalize_date(raw) == "1990-03-15"

    def test_impossible_date_raises(self):
        with pytest.raises(ValueError):
            normalize_date("31/02/1990")

    def test_two_digit_year_raises(self):
        with pytest.raises(ValueError):
            normalize_date("15/03/90")


class TestOtherNormalization:
    def test_numeric_id_keeps_digits(self):
        assert normalize_numeric_id("123.456.789-00") == "12345678900"

    def test_numeric_id_without_digits_raises(self):
        with pytest.raises(ValueError):
            normalize_numeric_id("n/a")

    def test_address_abbreviations(self):
        assert normalize_address("R. das Flores, 123 - Apto 4") == "rua das flores 123 apartamento 4"
        assert normalize_address("Av. Paulista, nº 1000, Bl. B") == "avenida paulista numero 1000 bloco b"

    def test_normalize_value_dispatches_by_field(self):
        assert normalize_value("tax_id", "529.982.247-25") == "52998224725"
        assert normalize_value("birth_date", "01/02/2000") == "2000-02-01"
        assert normalize_value("city", "  São   Paulo ") == "sao paulo"

    def test_normalize_value_wraps_failures(self):
        with pytest.raises(NormalizationSkip) as exc_info:
            normalize_value("birth_date", "março de 1990")
        assert exc_info.value.code == "NORMALIZATION_SKIPPED"
        assert exc_info.value.field == "birth_date"


class TestNormalizeFields:
    def test_one_bad_field_does_not_stop_the_others(self):
        result = normalize_fields(
            "doc-1",
            {"name": "João da Silva", "birth_date": "99/99/9999", "tax_id": "529.982.247-25"},
            {"name": 80, "birth_date": 75, "tax_id": 90},
        )
        by_name = {f.field_name: f for f in result.fields}
        assert by_name["name"].normalized_value == "joao silva"
        assert by_name["tax_id"].normalized_value == "52998224725"
        assert by_name["birth_date"].normalized_value == "99/99/9999"
        assert by_name["birth_date"].comparable is False
        assert [s.code for s in result.skipped] == ["NORMALIZATION_SKIPPED"]

    def test_comparable_excludes_skipped_fields(self):
        result = normalize_fields("doc-1", {"name": "Ana", "birth_date": "ontem"})
        assert comparable_values(result.fields) == {"name": "ana"}

    def test_records_keep_raw_value_and_confidence(self):
        result = normalize_fields("doc-1", {"tax_id": "529.982.247-25"}, {"tax_id": 72.5}, source="generic")
        record = result.fields[0]
        assert record.document_id == "doc-1"
        assert record.raw_value == "529.982.247-25"
        assert record.confidence == 72.5
        assert record.source == "generic"


# ═══════════════════════════════════════════════════════════════════════
# SIMILARITY
# ═══════════════════════════════════════════════════════════════════════


class TestSimilarity:
    def test_tax_id_differing_digits_scores_zero(self):
        a = normalize_value("tax_id", "123.456.789-00")
        b = normalize_value("tax_id", "123.456.789-01")
        assert a == "12345678900"
        assert similarity("tax_id", a, b) == 0.0

    def test_same_name_after_normalization_scores_one(self):
        a = normalize_value("name", "joão da silva")
        b = normalize_value("name", "Joao Silva")
        assert similarity("name", a, b) == 1.0

    def test_dates_are_exact(self):
        assert similarity("birth_date", "1990-03-15", "1990-03-15") == 1.0
        assert similarity("birth_date", "1990-03-15", "1990-03-16") == 0.0

    def test_name_missing_middle_name(self):
        # 2 of 2 tokens matched one way, 2 of 3 the other
        assert name_similarity("maria santos", "maria silva santos") == pytest.approx((1 + 2 / 3) / 2)

    def test_name_word_order_does_not_matter(self):
        assert name_similarity("silva maria", "maria silva") == 1.0

    def test_name_typo_within_token_threshold(self):
        # 'cristina' vs 'christina': 8/9 similar, above 0.85
        assert name_similarity("ana cristina", "ana christina") == 1.0

    def test_empty_names(self):
        assert name_similarity("", "") == 1.0
        assert name_similarity("ana", "") == 0.0

    def test_edit_similarity(self):
        assert edit_similarity("abcd", "abce") == pytest.approx(0.75)

    def test_address_street_bonus(self):
        a = "rua das flores 123"
        b = "rua das flores 123 apartamento 4"
        assert address_similarity(a, b) == pytest.approx(min(1.0, edit_similarity(a, b) + 0.15))

    def test_address_different_street_no_bonus(self):
        a, b = "rua das flores 12", "rua das palmas 12"
        assert address_similarity(a, b) == pytest.approx(edit_similarity(a, b))

    def test_scores_stay_in_unit_interval(self):
        assert 0.0 <= similarity("address", "rua a 1", "rua a 1") <= 1.0
        assert similarity("address", "rua a 1", "rua a 1") == 1.0

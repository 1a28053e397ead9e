"""
Field catalogue — what each field is, how strictly it is compared, and which
fields are comparable between two document types.

Everything here is read-only process-wide configuration. The comparable
field table is deliberately asymmetric: comparing an id card against a tax
id registration may weigh fields differently than the reverse comparison.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from .models import DocumentType, FieldKind, FieldWeight

# ─── Field Kinds ─────────────────────────────────────────────────────

FIELD_KINDS: Mapping[str, FieldKind] = MappingProxyType({
    "name": FieldKind.NAME,
    "mother_name": FieldKind.NAME,
    "father_name": FieldKind.NAME,
    "birth_date": FieldKind.DATE,
    "issue_date": FieldKind.DATE,
    "date": FieldKind.DATE,
    "tax_id": FieldKind.NUMERIC_ID,
    "id_number": FieldKind.NUMERIC_ID,
    "registration_number": FieldKind.NUMERIC_ID,
    "zip_code": FieldKind.NUMERIC_ID,
    "address": FieldKind.ADDRESS,
    "city": FieldKind.TEXT,
    "birth_place": FieldKind.TEXT,
    "school_name": FieldKind.TEXT,
    "course": FieldKind.TEXT,
})

# Minimum similarity for a comparison to count as a match
MATCH_THRESHOLDS: Mapping[FieldKind, float] = MappingProxyType({
    FieldKind.NAME: 0.75,
    FieldKind.DATE: 0.9,
    FieldKind.NUMERIC_ID: 0.9,
    FieldKind.ADDRESS: 0.8,
    FieldKind.TEXT: 0.8,
})


def field_kind(field_name: str) -> FieldKind:
    """Kind of a field; unknown fields are compared as plain text."""
    return FIELD_KINDS.get(field_name, FieldKind.TEXT)


def match_threshold(field_name: str) -> float:
    return MATCH_THRESHOLDS[field_kind(field_name)]


# ─── Comparable Field Table ──────────────────────────────────────────
# (current document type, sibling document type) → weighted fields.
# Weights per pair sum to at most 1.0; scores are weight-normalized anyway.


def _weights(*pairs: tuple[str, float]) -> tuple[FieldWeight, ...]:
    return tuple(FieldWeight(field=name, weight=weight) for name, weight in pairs)


_ID, _TAX, _ADDR, _SCHOOL, _BIRTH = (
    DocumentType.ID_CARD,
    DocumentType.TAX_ID,
    DocumentType.ADDRESS_PROOF,
    DocumentType.SCHOOL_RECORD,
    DocumentType.BIRTH_RECORD,
)

COMPARABLE_FIELDS: Mapping[tuple[DocumentType, DocumentType], tuple[FieldWeight, ...]] = MappingProxyType({
    (_ID, _ID): _weights(("id_number", 0.4), ("name", 0.3), ("birth_date", 0.3)),
    (_ID, _TAX): _weights(("name", 0.5), ("birth_date", 0.3), ("tax_id", 0.2)),
    (_ID, _BIRTH): _weights(("name", 0.4), ("birth_date", 0.4), ("mother_name", 0.1), ("father_name", 0.1)),
    (_ID, _ADDR): _weights(("name", 1.0)),
    (_ID, _SCHOOL): _weights(("name", 0.6), ("birth_date", 0.4)),

    (_TAX, _TAX): _weights(("tax_id", 0.6), ("name", 0.4)),
    (_TAX, _ID): _weights(("tax_id", 0.5), ("name", 0.3), ("birth_date", 0.2)),
    (_TAX, _BIRTH): _weights(("name", 0.5), ("birth_date", 0.5)),
    (_TAX, _ADDR): _weights(("name", 1.0)),
    (_TAX, _SCHOOL): _weights(("name", 0.6), ("birth_date", 0.4)),

    (_ADDR, _ADDR): _weights(("address", 0.6), ("zip_code", 0.2), ("name", 0.2)),
    (_ADDR, _ID): _weights(("name", 1.0)),
    (_ADDR, _TAX): _weights(("name", 1.0)),

    (_SCHOOL, _ID): _weights(("name", 0.6), ("birth_date", 0.4)),
    (_SCHOOL, _TAX): _weights(("name", 0.6), ("birth_date", 0.4)),
    (_SCHOOL, _BIRTH): _weights(("name", 0.5), ("birth_date", 0.5)),

    (_BIRTH, _ID): _weights(("name", 0.35), ("birth_date", 0.45), ("mother_name", 0.1), ("father_name", 0.1)),
    (_BIRTH, _TAX): _weights(("name", 0.5), ("birth_date", 0.5)),
    (_BIRTH, _SCHOOL): _weights(("name", 0.5), ("birth_date", 0.5)),
})


def comparable_fields(
    current: DocumentType, sibling: DocumentType
) -> tuple[FieldWeight, ...] | None:
    """Fields comparable between two document types, or None if the pair is not comparable."""
    return COMPARABLE_FIELDS.get((current, sibling))


# ─── Declared Data Weights ─────────────────────────────────────────
# document type → field weights used when comparing extracted values with
# the values the applicant typed into the form. Unlisted fields count with
# DEFAULT_DECLARED_WEIGHT.

DEFAULT_DECLARED_WEIGHT = 0.2

DECLARED_FIELD_WEIGHTS: Mapping[DocumentType, Mapping[str, float]] = MappingProxyType({
    _ID: MappingProxyType({"name": 0.4, "id_number": 0.4, "birth_date": 0.2}),
    _TAX: MappingProxyType({"tax_id": 0.5, "name": 0.3, "birth_date": 0.2}),
    _ADDR: MappingProxyType({"address": 0.5, "name": 0.3, "zip_code": 0.2}),
})


def declared_weight(document_type: DocumentType, field_name: str) -> float:
    return DECLARED_FIELD_WEIGHTS.get(document_type, {}).get(field_name, DEFAULT_DECLARED_WEIGHT)


# ─── Required Fields ─────────────────────────────────────────────────
# Minimum fields a document of each type must yield; a missing one is a warning.

DEFAULT_REQUIRED_FIELDS: Mapping[DocumentType, tuple[str, ...]] = MappingProxyType({
    DocumentType.ID_CARD: ("name", "id_number"),
    DocumentType.TAX_ID: ("name", "tax_id"),
    DocumentType.ADDRESS_PROOF: ("address",),
    DocumentType.BIRTH_RECORD: ("name", "birth_date"),
    DocumentType.SCHOOL_RECORD: ("name",),
    DocumentType.OTHER: (),
})

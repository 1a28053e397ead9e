"""
Deterministic label-anchored extraction from recognized text.

Every document type has a fixed, ordered list of (field, anchor pattern)
pairs. The first value after an anchor is captured, trimmed, and assigned.
A field nobody anchors is simply absent from the result; extraction
never raises on a missing field.

Philosophy: It's better to extract nothing than to extract wrong data.
              Text values must sit on a "label: value" line; dates and
              numbers must follow their label on the same line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .classifier import Classification, DocumentClassifier
from .models import DocumentType

# Minimum classifier confidence before trusting a predicted type for "other" uploads
CLASSIFICATION_THRESHOLD = 0.6


# ─── Data Structures ────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldPattern:
    """One anchored pattern. Group 1 of the pattern is the value."""

    field: str
    pattern: re.Pattern[str]
    confidence: int  # 0-100, how much we trust this pattern on perfect OCR


@dataclass
class Extraction:
    """Result of extracting one document."""

    document_type: DocumentType  # Type whose patterns were applied
    fields: dict[str, str] = field(default_factory=dict)
    confidences: dict[str, int] = field(default_factory=dict)
    source: str = "pattern"  # "pattern" or "generic"
    classification: Classification | None = None


# ─── Pattern Builders ────────────────────────────────────────────────

_DATE = r"(\d{2}[./-]\d{2}[./-]\d{4}|\d{4}-\d{2}-\d{2})"
_NUMBER = r"(\d[\d./-]*\d|\d)"
_LONG_NUMBER = r"(\d[\d ./-]*\d)"  # Registration numbers are printed in spaced groups
_TAX_NUMBER = r"\b(\d{3}\.?\d{3}\.?\d{3}[-/]?\d{2})\b"


def _labeled(labels: str) -> re.Pattern[str]:
    """'Label: value' on its own line. Captures the rest of the line."""
    return re.compile(
        rf"^[ \t]*(?:{labels})[ \t]*:[ \t]*(\S.*?)[ \t]*$", re.MULTILINE
    )


def _after(labels: str, value: str) -> re.Pattern[str]:
    """First value of the given shape after the label, on the same line."""
    return re.compile(rf"(?<!\w)(?:{labels})(?!\w)[^\d\n]{{0,24}}{value}")


_NAME = "nome completo|nome|full name|name"
_MOTHER = "nome da m[ãa]e|m[ãa]e|mother'?s name|mother"
_FATHER = "nome do pai|pai|father'?s name|father"
_BIRTH = "data de nascimento|nascimento|nascido em|date of birth|birth date|birth|nasc\\.?"
_ISSUE = (
    "data de expedi[çc][ãa]o|expedi[çc][ãa]o|data de emiss[ãa]o|emiss[ãa]o|"
    "refer[êe]ncia|date of issue|issue date|issued"
)
_TAX_ID = "cpf|cpf/mf|n[úu]mero de inscri[çc][ãa]o|inscri[çc][ãa]o|tax id"
_ID_NUMBER = "registro geral|rg|identidade|identity number|id number|id no\\.?|document number"
_ADDRESS = "endere[çc]o|address"
_ZIP = "cep|zip code|zip|postal code"
_CITY = "cidade|munic[íi]pio|city"


# ─── Pattern Tables ──────────────────────────────────────────────────

FIELD_PATTERNS: dict[DocumentType, tuple[FieldPattern, ...]] = {
    DocumentType.ID_CARD: (
        FieldPattern("id_number", _after(_ID_NUMBER, _NUMBER), 85),
        FieldPattern("name", _labeled(_NAME), 80),
        FieldPattern("birth_date", _after(_BIRTH, _DATE), 75),
        FieldPattern("issue_date", _after(_ISSUE, _DATE), 75),
        FieldPattern("mother_name", _labeled(_MOTHER), 70),
        FieldPattern("father_name", _labeled(_FATHER), 70),
        FieldPattern("tax_id", _after(_TAX_ID, _NUMBER), 85),
    ),
    DocumentType.TAX_ID: (
        FieldPattern("tax_id", _after(_TAX_ID, _NUMBER), 90),
        FieldPattern("tax_id", re.compile(_TAX_NUMBER), 70),
        FieldPattern("name", _labeled(_NAME), 80),
        FieldPattern("birth_date", _after(_BIRTH, _DATE), 75),
        FieldPattern("issue_date", _after(_ISSUE, _DATE), 65),
    ),
    DocumentType.ADDRESS_PROOF: (
        FieldPattern("name", _labeled(f"{_NAME}|cliente|titular|customer|account holder"), 75),
        FieldPattern("address", _labeled(_ADDRESS), 70),
        FieldPattern("zip_code", _after(_ZIP, r"(\d{5}-?\d{3}|\d{5})"), 80),
        FieldPattern("city", _labeled(_CITY), 70),
        FieldPattern("issue_date", _after(_ISSUE, _DATE), 65),
    ),
    DocumentType.SCHOOL_RECORD: (
        FieldPattern("name", _labeled(f"nome do aluno|aluno\\(a\\)|aluna|aluno|student name|student|{_NAME}"), 80),
        FieldPattern("school_name", _labeled("escola|institui[çc][ãa]o de ensino|institui[çc][ãa]o|school"), 70),
        FieldPattern("course", _labeled("curso|s[ée]rie|ano escolar|grade|course"), 65),
        FieldPattern("birth_date", _after(_BIRTH, _DATE), 75),
        FieldPattern("issue_date", _after(_ISSUE, _DATE), 65),
    ),
    DocumentType.BIRTH_RECORD: (
        FieldPattern("name", _labeled(f"{_NAME}|registrado\\(a\\)|registrado"), 80),
        FieldPattern("birth_date", _after(_BIRTH, _DATE), 80),
        FieldPattern("birth_place", _labeled("local de nascimento|naturalidade|place of birth|birthplace"), 65),
        FieldPattern("mother_name", _labeled(_MOTHER), 75),
        FieldPattern("father_name", _labeled(_FATHER), 75),
        FieldPattern("registration_number", _after("matr[íi]cula|registration number|registration", _LONG_NUMBER), 80),
        FieldPattern("issue_date", _after(_ISSUE, _DATE), 65),
    ),
}

# Gathered from the whole text when the type of an "other" upload is unknown
GENERIC_PATTERNS: tuple[FieldPattern, ...] = (
    FieldPattern("name", _labeled(_NAME), 60),
    FieldPattern("tax_id", _after(_TAX_ID, _NUMBER), 70),
    FieldPattern("tax_id", re.compile(_TAX_NUMBER), 60),
    FieldPattern("id_number", _after(_ID_NUMBER, _NUMBER), 60),
    FieldPattern("address", _labeled(_ADDRESS), 60),
    FieldPattern("birth_date", _after(_BIRTH, _DATE), 60),
    FieldPattern("date", re.compile(rf"\b{_DATE}\b"), 50),
)

_GENERIC_NAME_CONFIDENCE = 40


# ─── Public API ──────────────────────────────────────────────────────


def prepare_text(raw_text: str) -> str:
    """Lowercase, unify line endings and collapse horizontal whitespace.

    Accents are kept: raw values should look like what was printed.
    """
    lines = raw_text.replace("\r\n", "\n").replace("\r", "\n").lower().split("\n")
    cleaned = (re.sub(r"[ \t\u00a0]+", " ", line).strip() for line in lines)
    return "\n".join(line for line in cleaned if line)


def extract_fields(
    raw_text: str,
    document_type: DocumentType,
    classifier: DocumentClassifier | None = None,
    threshold: float = CLASSIFICATION_THRESHOLD,
) -> Extraction:
    """Extract fields from recognized text.

    Args:
        raw_text: Text as returned by the recognition engine.
        document_type: Declared type of the upload.
        classifier: Used only for "other" uploads to predict a concrete type.
        threshold: Minimum classifier confidence to trust its prediction.

    Returns:
        Extraction with the fields that could be deterministically found.
    """
    text = prepare_text(raw_text)

    if document_type is not DocumentType.OTHER:
        values, confidences = _apply_patterns(text, FIELD_PATTERNS[document_type])
        return Extraction(document_type, values, confidences)

    classification = classifier.classify(text) if classifier is not None else None
    if (
        classification is not None
        and classification.document_type is not DocumentType.OTHER
        and classification.confidence >= threshold
    ):
        values, confidences = _apply_patterns(
            text, FIELD_PATTERNS[classification.document_type]
        )
        return Extraction(
            classification.document_type,
            values,
            confidences,
            classification=classification,
        )

    values, confidences = _apply_patterns(text, GENERIC_PATTERNS)
    if "name" not in values:
        name = _first_name_like_line(text)
        if name:
            values["name"] = name
            confidences["name"] = _GENERIC_NAME_CONFIDENCE

    return Extraction(
        DocumentType.OTHER,
        values,
        confidences,
        source="generic",
        classification=classification,
    )


# ─── Internal Helpers ────────────────────────────────────────────────


def _apply_patterns(
    text: str, patterns: tuple[FieldPattern, ...]
) -> tuple[dict[str, str], dict[str, int]]:
    """Run patterns in order; the first pattern that matches a field wins."""
    values: dict[str, str] = {}
    confidences: dict[str, int] = {}

    for item in patterns:
        if item.field in values:
            continue
        match = item.pattern.search(text)
        if match:
            value = match.group(1).strip()
            if value:
                values[item.field] = value
                confidences[item.field] = item.confidence

    return values, confidences


def _first_name_like_line(text: str) -> str | None:
    """First line of three or more words longer than two letters, without digits or labels."""
    for line in text.split("\n"):
        if ":" in line or re.search(r"\d", line):
            continue
        words = [word for word in line.split() if len(word) > 2]
        if len(words) >= 3:
            return line.strip()
    return None

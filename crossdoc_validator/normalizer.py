"""
Field normalization — canonical forms so that two documents can be compared.

Each field kind has one canonicalization function. A function that cannot
canonicalize a value raises NormalizationSkip; the value is then passed
through raw and the field is marked non-comparable. One field's failure
never stops the others from being normalized.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable

from .classifier import strip_accents
from .exceptions import NormalizationSkip
from .fields import field_kind
from .models import ExtractedField, FieldKind, ValidationFinding

logger = logging.getLogger(__name__)

# ─── Vocabulary ──────────────────────────────────────────────────────

# Linking words dropped from names: "joão da silva" == "joão silva"
NAME_LINKING_WORDS: frozenset[str] = frozenset({"de", "da", "do", "dos", "das", "e"})

# Address abbreviations → full words (matched per token, trailing dot ignored)
ADDRESS_ABBREVIATIONS: dict[str, str] = {
    "apto": "apartamento",
    "apt": "apartamento",
    "ap": "apartamento",
    "bl": "bloco",
    "blc": "bloco",
    "r": "rua",
    "av": "avenida",
    "al": "alameda",
    "tv": "travessa",
    "trav": "travessa",
    "n": "numero",
    "no": "numero",
    "nº": "numero",
    "num": "numero",
}

_DATE_FORMATS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?P<day>\d{2})[/.\-](?P<month>\d{2})[/.\-](?P<year>\d{4})$"),
    re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})$"),
)


# ─── Per-Kind Canonicalization ───────────────────────────────────────


def normalize_name(value: str) -> str:
    """'João  da Silva' → 'joao silva'."""
    text = strip_accents(value.lower())
    text = re.sub(r"[^\w\s]", " ", text)
    tokens = [token for token in text.split() if token not in NAME_LINKING_WORDS]
    if not tokens:
        raise ValueError("no name tokens left")
    return " ".join(tokens)


def normalize_date(value: str) -> str:
    """'01/02/1990', '01.02.1990', '01-02-1990' or '1990-02-01' → '1990-02-01'.

    Two-digit years and impossible calendar dates are ambiguous, so we refuse
    to guess.
    """
    stripped = value.strip()
    for pattern in _DATE_FORMATS:
        match = pattern.match(stripped)
        if match:
            parsed = date(
                int(match.group("year")),
                int(match.group("month")),
                int(match.group("day")),
            )
            return parsed.isoformat()
    raise ValueError("unrecognized date format")


def normalize_numeric_id(value: str) -> str:
    """'123.456.789-09' → '12345678909'."""
    digits = re.sub(r"\D", "", value)
    if not digits:
        raise ValueError("no digits")
    return digits


def normalize_address(value: str) -> str:
    """'R. das Flores, 123 - Apto 4' → 'rua das flores 123 apartamento 4'."""
    text = strip_accents(value.lower())
    text = re.sub(r"[,;:\-/()]", " ", text)
    tokens = []
    for token in text.split():
        bare = token.rstrip(".")
        tokens.append(ADDRESS_ABBREVIATIONS.get(bare, bare))
    result = " ".join(token for token in tokens if token)
    if not result:
        raise ValueError("empty address")
    return result


def normalize_text(value: str) -> str:
    text = " ".join(strip_accents(value.lower()).split())
    if not text:
        raise ValueError("empty value")
    return text


_NORMALIZERS: dict[FieldKind, Callable[[str], str]] = {
    FieldKind.NAME: normalize_name,
    FieldKind.DATE: normalize_date,
    FieldKind.NUMERIC_ID: normalize_numeric_id,
    FieldKind.ADDRESS: normalize_address,
    FieldKind.TEXT: normalize_text,
}


# ─── Public API ──────────────────────────────────────────────────────


def normalize_value(field_name: str, value: str) -> str:
    """Canonicalize one value according to its field kind.

    Raises:
        NormalizationSkip: the value cannot be canonicalized.
    """
    try:
        return _NORMALIZERS[field_kind(field_name)](value)
    except ValueError as e:
        raise NormalizationSkip(field_name, value, str(e)) from e


def comparable_values(fields: Iterable[ExtractedField]) -> dict[str, str]:
    """field name → normalized value, for the fields that may be compared."""
    return {f.field_name: f.normalized_value for f in fields if f.comparable}


@dataclass
class NormalizedFields:
    """Normalized field records plus the skips recorded along the way."""

    fields: list[ExtractedField] = field(default_factory=list)
    skipped: list[ValidationFinding] = field(default_factory=list)


def normalize_fields(
    document_id: str,
    raw_fields: dict[str, str],
    confidences: dict[str, float] | None = None,
    source: str = "pattern",
) -> NormalizedFields:
    """Normalize every extracted field in isolation.

    Args:
        document_id: Owner of the fields.
        raw_fields: field name → raw extracted value.
        confidences: field name → confidence (0-100); missing entries count as 0.
        source: Extraction source recorded on every field.
    """
    confidences = confidences or {}
    result = NormalizedFields()

    for field_name, raw_value in raw_fields.items():
        comparable = True
        try:
            normalized = normalize_value(field_name, raw_value)
        except NormalizationSkip as skip:
            logger.warning("Field %s not normalized: %s", field_name, skip)
            result.skipped.append(skip.to_finding())
            normalized = raw_value
            comparable = False

        result.fields.append(
            ExtractedField(
                document_id=document_id,
                field_name=field_name,
                raw_value=raw_value,
                normalized_value=normalized,
                confidence=round(max(0.0, min(100.0, confidences.get(field_name, 0.0))), 2),
                source=source,
                comparable=comparable,
            )
        )

    return result

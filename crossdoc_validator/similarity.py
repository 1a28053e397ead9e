"""
Field-kind-aware similarity between two normalized values (0.0-1.0).

IDs and dates are NEVER fuzzy: a one-digit difference in a tax id is a
different person, so they either match exactly or score 0.0. Names are
compared token by token so word order and dropped middle names hurt less.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein

from .fields import field_kind
from .models import FieldKind

# Two name tokens are "the same word" above this edit similarity
TOKEN_MATCH_THRESHOLD = 0.85

# Bonus when two addresses share the same street name
STREET_BONUS = 0.15

_STREET_TYPES: frozenset[str] = frozenset({
    "rua", "avenida", "alameda", "travessa", "estrada", "rodovia", "praca",
    "largo", "street", "avenue", "road",
})
_STREET_LINKING_WORDS: frozenset[str] = frozenset({"de", "da", "do", "dos", "das"})


def edit_similarity(a: str, b: str) -> float:
    """1 − normalized Levenshtein distance."""
    return Levenshtein.normalized_similarity(a, b)


def exact_similarity(a: str, b: str) -> float:
    return 1.0 if a == b else 0.0


def name_similarity(a: str, b: str) -> float:
    """Token-set similarity averaged over both directions.

    Each token of one side counts as matched if the closest token on the
    other side is more than TOKEN_MATCH_THRESHOLD similar.
    """
    tokens_a, tokens_b = a.split(), b.split()
    if not tokens_a or not tokens_b:
        return 1.0 if not tokens_a and not tokens_b else 0.0

    def matched_share(source: list[str], target: list[str]) -> float:
        matched = sum(
            1
            for token in source
            if max(edit_similarity(token, other) for other in target) > TOKEN_MATCH_THRESHOLD
        )
        return matched / len(source)

    return (matched_share(tokens_a, tokens_b) + matched_share(tokens_b, tokens_a)) / 2


def address_similarity(a: str, b: str) -> float:
    """Whole-string edit similarity, plus a bonus for the same street name."""
    score = edit_similarity(a, b)
    street_a, street_b = _street_name(a), _street_name(b)
    if street_a and street_a == street_b:
        score = min(1.0, score + STREET_BONUS)
    return score


def similarity(field_name: str, a: str, b: str) -> float:
    """Similarity of two normalized values of the given field (0.0-1.0)."""
    kind = field_kind(field_name)
    if kind in (FieldKind.NUMERIC_ID, FieldKind.DATE):
        return exact_similarity(a, b)
    if kind is FieldKind.NAME:
        return name_similarity(a, b)
    if kind is FieldKind.ADDRESS:
        return address_similarity(a, b)
    return edit_similarity(a, b)


def _street_name(address: str) -> str | None:
    """First significant token after the street type ('rua das flores 12' → 'flores')."""
    tokens = address.split()
    while tokens and (tokens[0] in _STREET_TYPES or tokens[0] in _STREET_LINKING_WORDS):
        tokens = tokens[1:]
    return tokens[0] if tokens else None

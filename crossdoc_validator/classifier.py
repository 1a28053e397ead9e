"""
Keyword-scored document type classification.

Used when a document is uploaded as "other": the extractor needs a concrete
type to know which labels to look for. Each type has a weighted keyword
list; matched weights are summed and capped at 1.0, and the best-scoring
type wins. A low score means "we don't really know" and the extractor falls
back to a generic field set.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Protocol

from .models import DocumentType


@dataclass(frozen=True)
class Classification:
    """A predicted document type and how sure we are (0.0-1.0)."""

    document_type: DocumentType
    confidence: float


class DocumentClassifier(Protocol):
    def classify(self, text: str) -> Classification | None: ...


# ─── Keyword Table ───────────────────────────────────────────────────
# Keywords are matched as whole words against lowercase, accent-free text.

_KEYWORDS: dict[DocumentType, tuple[tuple[str, float], ...]] = {
    DocumentType.ID_CARD: (
        ("registro geral", 0.6),
        ("carteira de identidade", 0.6),
        ("identity card", 0.6),
        ("secretaria de seguranca", 0.3),
        ("filiacao", 0.2),
        ("expedicao", 0.2),
        ("rg", 0.1),
    ),
    DocumentType.TAX_ID: (
        ("cadastro de pessoa fisica", 0.6),
        ("cadastro de pessoas fisicas", 0.6),
        ("receita federal", 0.4),
        ("ministerio da fazenda", 0.4),
        ("tax id", 0.5),
        ("cpf", 0.2),
    ),
    DocumentType.ADDRESS_PROOF: (
        ("comprovante de residencia", 0.6),
        ("proof of address", 0.6),
        ("fatura", 0.2),
        ("conta de", 0.2),
        ("energia", 0.2),
        ("agua", 0.1),
        ("telefone", 0.1),
        ("vencimento", 0.2),
        ("cep", 0.1),
        ("endereco", 0.1),
    ),
    DocumentType.SCHOOL_RECORD: (
        ("historico escolar", 0.6),
        ("school record", 0.6),
        ("declaracao de matricula", 0.5),
        ("diploma", 0.4),
        ("escola", 0.2),
        ("aluno", 0.2),
        ("serie", 0.1),
        ("frequencia", 0.1),
    ),
    DocumentType.BIRTH_RECORD: (
        ("certidao de nascimento", 0.6),
        ("birth certificate", 0.6),
        ("registro civil", 0.4),
        ("cartorio", 0.2),
        ("nascido", 0.2),
        ("matricula", 0.1),
    ),
}

_PATTERNS: dict[DocumentType, tuple[tuple[re.Pattern[str], float], ...]] = {
    document_type: tuple((re.compile(rf"\b{re.escape(keyword)}\b"), weight) for keyword, weight in keywords)
    for document_type, keywords in _KEYWORDS.items()
}


def strip_accents(text: str) -> str:
    """Remove diacritics: 'João' → 'Joao'."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


class KeywordDocumentClassifier:
    """Deterministic classifier based on weighted keyword hits."""

    def classify(self, text: str) -> Classification | None:
        normalized = strip_accents(text.lower())

        best: Classification | None = None
        for document_type, patterns in _PATTERNS.items():
            score = min(
                1.0,
                sum(weight for pattern, weight in patterns if pattern.search(normalized)),
            )
            if score > 0 and (best is None or score > best.confidence):
                best = Classification(document_type, round(score, 3))

        return best


class FallbackClassifier:
    """Try a primary classifier first, use the secondary one when it gives up."""

    def __init__(self, primary: DocumentClassifier, secondary: DocumentClassifier):
        self.primary = primary
        self.secondary = secondary

    def classify(self, text: str) -> Classification | None:
        result = self.primary.classify(text)
        if result is not None:
            return result
        return self.secondary.classify(text)

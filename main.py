#!/usr/bin/env python3
"""
Cross-Document Validator — Entry Point
=======================================

Demonstrates the full validation pipeline on a sample two-document case:
an ID card and a tax id card of the same person, the second one with a
slightly garbled name and an issue date that is off.

Usage:
    python main.py                                   # In-memory store, keyword classifier
    CROSSDOC_DATABASE_URL=sqlite:///demo.db python main.py
    OPENAI_API_KEY=sk-... python main.py             # LLM classifier for "other" uploads
"""

from __future__ import annotations

import logging
import sys

from crossdoc_validator.config import get_settings
from crossdoc_validator.models import DocumentStatus, DocumentType, ProcessOptions, ValidationResult
from crossdoc_validator.pipeline import DocumentValidationEngine


# ─── Sample Case — OCR Output, Noisy on Purpose ─────────────────────

CASE_ID = "demo-case-001"

ID_CARD_TEXT = """\
REPÚBLICA FEDERATIVA DO BRASIL
CARTEIRA DE IDENTIDADE
Registro Geral: 12.345.678-9
Data de Expedição: 10/02/2015
Nome: Maria da Silva Santos
Nome da Mãe: Ana Pereira da Silva
Nome do Pai: José Santos
Data de Nascimento: 15/03/1990
CPF: 529.982.247-25"""

TAX_ID_TEXT = """\
MINISTÉRIO DA FAZENDA
Receita Federal do Brasil
Cadastro de Pessoas Físicas
Número de Inscrição: 529.982.247-25
Nome: MARIA DA SILVA SANTOZ
Data de Nascimento: 15/03/1990
Emissão: 01/01/1985"""

# What the applicant typed into the registration form
APPLICANT_FORM = {"name": "Maria da Silva Santos", "birth_date": "15/03/1990", "tax_id": "529.982.247-25"}


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_COLORS = {
    DocumentStatus.VALID: _GREEN,
    DocumentStatus.INVALID: _RED,
    DocumentStatus.NEEDS_REVIEW: _YELLOW,
    DocumentStatus.PENDING: _CYAN,
}


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_fields(result: ValidationResult) -> None:
    for name, value in result.extracted_data.items():
        print(f"  {name + ':':<22}{value}")


def _print_matches(result: ValidationResult) -> None:
    cross = result.cross_validation
    if not cross.matches:
        print(f"  {_DIM}Nothing comparable in this case yet.{_RESET}")
        return
    print(f"  Score:       {_BOLD}{cross.score:.3f}{_RESET}  vs {', '.join(cross.compared_documents)}")
    for match in cross.matches:
        mark = f"{_GREEN}ok{_RESET}" if match.matched else f"{_RED}!!{_RESET}"
        print(
            f"    [{mark}] {match.field:<14} sim={match.similarity:.3f} "
            f"{_DIM}(≥ {match.threshold}, weight {match.weight}){_RESET}"
        )
    for item in cross.inconsistencies:
        print(f"    {_YELLOW}inconsistent {item.field} ({item.severity.value}){_RESET}")


def _print_findings_group(findings, color: str, label: str) -> None:
    """Print a categorized group of findings (errors or warnings)."""
    if not findings:
        return
    print(f"\n  {color}{_BOLD}{label} ({len(findings)}){_RESET}")
    for f in findings:
        print(f"    {color}[{f.code}]{_RESET} {_DIM}{f.field}{_RESET}")
        print(f"    {f.message}")
        print()


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_result(result: ValidationResult) -> None:
    """Pretty-print one validation result with ANSI color codes."""
    color = _STATUS_COLORS[result.status]
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {result.document_type.value.upper()}  {_DIM}{result.document_id}{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Status:      {color}{_BOLD}{result.status.value}{_RESET}  (confidence {result.confidence})")
    print(f"  Audit Hash:  {_DIM}{result.content_hash[:16]}...{_RESET}")
    print(f"{'─' * _WIDTH}")
    _print_fields(result)
    print(f"{'─' * _WIDTH}")
    _print_matches(result)
    if result.declared_data is not None:
        declared = result.declared_data
        mark = _GREEN if declared.consistent else _YELLOW
        print(f"  Declared:    {mark}{declared.score:.3f}{_RESET}  ({declared.match_ratio:.0%} of form fields match)")
    if result.fraud_detection.details:
        print(f"{'─' * _WIDTH}")
        print(f"  Fraud:       {result.fraud_detection.confidence}/100")
        for signal in result.fraud_detection.details:
            print(f"    {signal.type} (+{signal.confidence}): {signal.message}")

    _print_findings_group(result.errors, _RED, "ERRORS")
    _print_findings_group(result.warnings, _YELLOW, "WARNINGS")


# ─── Main ────────────────────────────────────────────────────────────


def main():
    """Submit the sample case and print one report per document."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    print("\n  Starting Cross-Document Validator...")
    print(f"  Submitting case {CASE_ID}...\n")

    engine = DocumentValidationEngine(settings)
    engine.start()
    form = ProcessOptions(declared_data=APPLICANT_FORM)
    try:
        results = [
            engine.process_document(ID_CARD_TEXT.encode("utf-8"), DocumentType.ID_CARD, CASE_ID, form),
            engine.process_document(TAX_ID_TEXT.encode("utf-8"), DocumentType.TAX_ID, CASE_ID, form),
        ]
        for result in results:
            print_result(result)

        metrics = engine.get_metrics(CASE_ID)
        print(f"\n{'=' * _WIDTH}")
        print(f"  {_BOLD}{metrics.total_documents} document(s){_RESET}, "
              f"verification rate {metrics.verification_rate:.0f}%, "
              f"{len(engine.review_queue(CASE_ID))} waiting for review")
        print(f"{'=' * _WIDTH}\n")
    finally:
        engine.shutdown()

    sys.exit(0 if all(r.status is DocumentStatus.VALID for r in results) else 1)


if __name__ == "__main__":
    main()

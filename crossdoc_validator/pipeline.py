"""
Validation engine — orchestrates the full workflow for one upload.

Flow:
  ┌──────────────┐
  │ Upload bytes │──── SHA-256 content hash
  └──────┬───────┘
         │
  ┌──────▼──────┐
  │ Recognition │   ← External OCR, bounded pool + slot wait + timeout
  └──────┬──────┘
         │
  ┌──────▼──────┐     ┌────────────┐
  │  Extractor  │ ◀── │ Classifier │   ← Only for "other" uploads
  └──────┬──────┘     └────────────┘
         │
  ┌──────▼──────┐
  │ Normalizer  │   ← Per field, isolated
  └──────┬──────┘
         │                 ┌─────────────────┐
  ┌──────▼───────────┐ ◀── │ Case snapshot   │
  │ Cross-validation │     │ (sibling docs)  │
  └──────┬───────────┘     └─────────────────┘
         │
  ┌──────▼──────┐
  │   Fraud     │   ← Duplicates, ID/date rules, optional forensics
  └──────┬──────┘
         │
  ┌──────▼────────┐
  │ Declared data │   ← Only when the applicant's form values were given
  └──────┬────────┘
         │
  ┌──────▼──────┐
  │   Result    │   ← Appended to the store; status by compare-and-set
  └─────────────┘

Design principles:
  - Extraction, normalization and fraud heuristics never fail a document;
    their problems become warnings or errors on the result.
  - Only NotInitialized and PersistenceFailure escape process_document.
  - A validation run only moves a document out of "pending"; anything
    else takes a reviewer.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field

from .classifier import DocumentClassifier, FallbackClassifier, KeywordDocumentClassifier
from .classifier_llm import LLMDocumentClassifier
from .config import Settings, get_settings
from .cross_validation import Sibling, cross_validate
from .declared_data import DECLARED_DATA_CODES, check_declared_data
from .exceptions import (
    DocumentNotFound,
    ExtractionGap,
    InvalidFieldCorrection,
    InvalidStatusTransition,
    NormalizationSkip,
    NotInitialized,
    RecognitionFailure,
    RecognitionUnavailable,
    ValidationNotFound,
)
from .extractor import extract_fields
from .fields import DEFAULT_REQUIRED_FIELDS
from .fraud import FraudContext, detect_fraud, find_duplicates, fraud_findings
from .models import (
    Document,
    DocumentStatus,
    DocumentType,
    ExtractedField,
    FieldCorrection,
    FraudDetection,
    ProcessOptions,
    RecognitionResult,
    ReviewAction,
    TamperingSignal,
    ValidationFinding,
    ValidationMetrics,
    ValidationResult,
    new_id,
    utcnow,
)
from .normalizer import comparable_values, normalize_fields, normalize_value
from .recognition import ImageForensics, NoOpForensics, PlainTextRecognizer, TextRecognizer
from .status import AUTOMATIC_SOURCES, check_review_transition, combine_verdicts
from .store import InMemoryValidationStore, ValidationStore

logger = logging.getLogger(__name__)

# Findings recomputed on every run; everything else comes from extraction
_RECOMPUTED_CODES = frozenset({"FRAUD_SUSPECTED", "FRAUD_POSSIBLE"}) | DECLARED_DATA_CODES

# Extraction findings about one field; resolved once that field is comparable
_FIELD_CODES = frozenset({"EXTRACTION_GAP", "NORMALIZATION_SKIPPED"})

_RECOGNITION_CODES = frozenset({RecognitionFailure.error_code, RecognitionUnavailable.error_code})


@dataclass
class Submission:
    """One upload of a batch."""

    content: bytes
    document_type: DocumentType
    case_id: str
    options: ProcessOptions = field(default_factory=ProcessOptions)


class DocumentValidationEngine:
    """Extracts, cross-validates and fraud-checks documents of a case.

    Usage:
        engine = DocumentValidationEngine()
        engine.start()
        result = engine.process_document(content, DocumentType.ID_CARD, "case-42")
        if result.status is DocumentStatus.NEEDS_REVIEW:
            for error in result.errors:
                print(error)
        engine.shutdown()

    Every collaborator is injected; the defaults are a plain-text recognizer,
    no image forensics, the keyword classifier (LLM first when an API key is
    configured) and an in-memory store unless ``database_url`` is set.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ValidationStore | None = None,
        recognizer: TextRecognizer | None = None,
        forensics: ImageForensics | None = None,
        classifier: DocumentClassifier | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or _build_store(self.settings)
        self.recognizer = recognizer or PlainTextRecognizer()
        self.forensics = forensics or NoOpForensics()
        self.classifier = classifier or _build_classifier(self.settings)
        self._recognition_pool: ThreadPoolExecutor | None = None
        self._lifecycle = threading.Lock()

    # ─── Lifecycle ───────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._recognition_pool is not None

    def start(self) -> None:
        """Open the store and the recognition worker pool. Idempotent."""
        with self._lifecycle:
            if self.started:
                return
            self.store.start()
            self._recognition_pool = ThreadPoolExecutor(
                max_workers=self.settings.max_workers,
                thread_name_prefix="recognition",
            )
            logger.info(
                "Validation engine started (store=%s, workers=%d, timeout=%.1fs)",
                type(self.store).__name__,
                self.settings.max_workers,
                self.settings.recognition_timeout_seconds,
            )

    def shutdown(self) -> None:
        with self._lifecycle:
            if not self.started:
                return
            self._recognition_pool.shutdown(wait=False, cancel_futures=True)
            self._recognition_pool = None
            self.store.close()
            logger.info("Validation engine stopped")

    # ─── Processing ──────────────────────────────────────────────────

    def process_document(
        self,
        content: bytes,
        document_type: DocumentType | str,
        case_id: str,
        options: ProcessOptions | None = None,
    ) -> ValidationResult:
        """Run the full pipeline on one upload.

        Args:
            content: The uploaded file bytes.
            document_type: Declared type; "other" lets the classifier decide.
            case_id: The case the document belongs to.
            options: Required fields override, the fraud switch and the
                applicant's declared values.

        Returns:
            The inserted ValidationResult.

        Raises:
            NotInitialized: start() has not been called.
            PersistenceFailure: the store could not record the document or result.
        """
        self._require_started()
        document_type = DocumentType(document_type)
        options = options or ProcessOptions()
        content_hash = hashlib.sha256(content).hexdigest()
        document_id = new_id()

        logger.info("Processing %s document %s for case %s", document_type.value, document_id, case_id)

        errors: list[ValidationFinding] = []
        warnings: list[ValidationFinding] = []

        # ── Step 1: Text recognition ────────────────────────────────
        try:
            recognition = self._recognize(content)
        except RecognitionFailure as e:
            logger.error("Recognition failed for document %s: %s", document_id, e)
            errors.append(e.to_finding())
            recognition = None

        tampering = self._analyze_image(content, document_id) if options.detect_fraud else None

        if recognition is None:
            document = Document(
                id=document_id,
                case_id=case_id,
                document_type=document_type,
                content_hash=content_hash,
                declared_data=options.declared_data,
            )
            self.store.add_document(document)
            return self._evaluate(document, [], warnings, errors, options.detect_fraud, tampering)

        # ── Step 2: Extraction ──────────────────────────────────────
        extraction = extract_fields(
            recognition.text,
            document_type,
            classifier=self.classifier,
            threshold=self.settings.classification_threshold,
        )
        detected_type = (
            extraction.document_type
            if document_type is DocumentType.OTHER and extraction.document_type is not DocumentType.OTHER
            else None
        )
        effective_type = detected_type or document_type

        required = (
            options.required_fields
            if options.required_fields is not None
            else list(DEFAULT_REQUIRED_FIELDS[effective_type])
        )
        for name in required:
            if name not in extraction.fields:
                warnings.append(ExtractionGap(name, effective_type.value).to_finding())

        # ── Step 3: Normalization ───────────────────────────────────
        confidences = {
            name: pattern_confidence * recognition.confidence / 100
            for name, pattern_confidence in extraction.confidences.items()
        }
        normalized = normalize_fields(document_id, extraction.fields, confidences, source=extraction.source)
        warnings.extend(normalized.skipped)

        document = Document(
            id=document_id,
            case_id=case_id,
            document_type=document_type,
            detected_type=detected_type,
            raw_text=recognition.text,
            ocr_confidence=recognition.confidence,
            content_hash=content_hash,
            extraction_confidence=_extraction_confidence(required, extraction.fields, recognition.confidence),
            declared_data=options.declared_data,
        )
        self.store.add_document(document, normalized.fields)

        return self._evaluate(document, normalized.fields, warnings, errors, options.detect_fraud, tampering)

    def process_batch(self, submissions: list[Submission]) -> list[ValidationResult]:
        """Process several uploads concurrently, bounded by ``max_workers``.

        Results come back in submission order. The first exception that
        escapes a document (e.g. PersistenceFailure) is re-raised.
        """
        self._require_started()
        with ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="validation"
        ) as pool:
            return list(
                pool.map(
                    lambda s: self.process_document(s.content, s.document_type, s.case_id, s.options),
                    submissions,
                )
            )

    def revalidate_document(self, document_id: str, detect_fraud: bool = True) -> ValidationResult:
        """Re-run cross-validation and fraud checks against the current case.

        Extraction is not repeated: the stored fields are reused, and the
        extraction findings of the latest run are carried over, except those
        about a field that has since become comparable.

        Raises:
            DocumentNotFound: no such document.
        """
        self._require_started()
        document = self.get_document(document_id)
        fields = self.store.get_extracted_fields(document_id)
        history = self.store.list_validation_results(document_id)
        latest = history[-1] if history else None
        resolved = set(comparable_values(fields))

        def carried(findings: list[ValidationFinding]) -> list[ValidationFinding]:
            return [
                f
                for f in findings
                if f.code not in _RECOMPUTED_CODES and not (f.code in _FIELD_CODES and f.field in resolved)
            ]

        warnings = carried(latest.warnings) if latest else []
        errors = carried(latest.errors) if latest else []
        tampering = _previous_tampering(latest.fraud_detection) if latest else None

        logger.info("Revalidating document %s of case %s", document_id, document.case_id)
        return self._evaluate(document, fields, warnings, errors, detect_fraud, tampering)

    def correct_fields(
        self,
        document_id: str,
        corrections: dict[str, str],
        reviewer_id: str,
        notes: str | None = None,
    ) -> ValidationResult:
        """Replace extracted values with ones typed in by a reviewer, then revalidate.

        Corrected fields are stored with source "manual" and full confidence;
        fields not named keep their extracted values. Either every correction
        is applied, together with its audit entry, or none is.

        Raises:
            DocumentNotFound: no such document.
            InvalidFieldCorrection: no corrections, or a value is empty or
                cannot be normalized.
        """
        self._require_started()
        self.get_document(document_id)
        if not corrections:
            raise InvalidFieldCorrection("document", "At least one field correction is required")

        current = {f.field_name: f for f in self.store.get_extracted_fields(document_id)}
        audit: list[FieldCorrection] = []
        for field_name, value in corrections.items():
            value = value.strip()
            if not value:
                raise InvalidFieldCorrection(field_name, f"Corrected value for '{field_name}' is empty")
            try:
                normalized = normalize_value(field_name, value)
            except NormalizationSkip as skip:
                raise InvalidFieldCorrection(field_name, str(skip), skip.details) from skip

            previous = current.get(field_name)
            current[field_name] = ExtractedField(
                document_id=document_id,
                field_name=field_name,
                raw_value=value,
                normalized_value=normalized,
                confidence=100,
                source="manual",
            )
            audit.append(
                FieldCorrection(
                    document_id=document_id,
                    field_name=field_name,
                    previous_value=previous.raw_value if previous else None,
                    corrected_value=value,
                    reviewer_id=reviewer_id,
                    notes=notes,
                )
            )

        self.store.replace_extracted_fields(document_id, list(current.values()), audit)
        logger.info(
            "Reviewer %s corrected %s on document %s",
            reviewer_id, ", ".join(c.field_name for c in audit), document_id,
        )
        return self.revalidate_document(document_id)

    # ─── Review ──────────────────────────────────────────────────────

    def update_validation_status(
        self,
        validation_id: str,
        new_status: DocumentStatus | str,
        reviewer_id: str,
        notes: str | None = None,
    ) -> ValidationResult:
        """Record a reviewer's verdict on a validation result.

        The reviewed result is never rewritten: a new result row carries the
        reviewer's status and the ReviewAction that produced it.

        Raises:
            ValidationNotFound: no such validation result.
            InvalidStatusTransition: the document is still pending, the target
                is not valid/invalid, or the document status changed while
                the review was being recorded.
        """
        self._require_started()
        new_status = DocumentStatus(new_status)

        reviewed = self.store.get_validation_result(validation_id)
        if reviewed is None:
            raise ValidationNotFound(validation_id)
        document = self.get_document(reviewed.document_id)
        check_review_transition(document.status, new_status)

        action = ReviewAction(
            document_id=document.id,
            validation_id=validation_id,
            reviewer_id=reviewer_id,
            previous_status=document.status,
            new_status=new_status,
            notes=notes,
        )
        now = utcnow()
        result = reviewed.model_copy(
            update={
                "id": new_id(),
                "status": new_status,
                "review": action,
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        )

        if not self.store.record_review(action, result):
            current = self.get_document(document.id)
            raise InvalidStatusTransition(current.status.value, new_status.value)

        logger.info(
            "Reviewer %s moved document %s from %s to %s",
            reviewer_id, document.id, document.status.value, new_status.value,
        )
        return result

    # ─── Queries ─────────────────────────────────────────────────────

    def get_document(self, document_id: str) -> Document:
        self._require_started()
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def list_documents_by_case(self, case_id: str) -> list[Document]:
        self._require_started()
        return self.store.list_documents_by_case(case_id)

    def list_validation_history(self, document_id: str) -> list[ValidationResult]:
        """All result rows of a document, oldest first."""
        self.get_document(document_id)
        return self.store.list_validation_results(document_id)

    def list_reviews(self, document_id: str) -> list[ReviewAction]:
        self.get_document(document_id)
        return self.store.list_reviews(document_id)

    def list_field_corrections(self, document_id: str) -> list[FieldCorrection]:
        self.get_document(document_id)
        return self.store.list_field_corrections(document_id)

    def review_queue(self, case_id: str | None = None) -> list[Document]:
        """Documents waiting for a reviewer."""
        self._require_started()
        return self.store.list_documents_by_status(DocumentStatus.NEEDS_REVIEW, case_id)

    def get_metrics(self, case_id: str | None = None) -> ValidationMetrics:
        self._require_started()
        counts = self.store.status_counts(case_id)
        total = sum(counts.values())
        valid = counts.get(DocumentStatus.VALID, 0)
        return ValidationMetrics(
            case_id=case_id,
            total_documents=total,
            by_status=counts,
            verification_rate=round(valid / total * 100, 2) if total else 0.0,
        )

    # ─── Internal Helpers ────────────────────────────────────────────

    def _require_started(self) -> None:
        if not self.started:
            raise NotInitialized()

    def _recognize(self, content: bytes) -> RecognitionResult:
        """Call the recognizer on the bounded pool.

        Waiting for a free worker and waiting for the recognizer are bounded
        separately; the recognition timeout starts once the call begins.
        """
        timeout = self.settings.recognition_timeout_seconds
        slot_timeout = self.settings.recognition_slot_timeout_seconds
        started = threading.Event()

        def call() -> RecognitionResult:
            started.set()
            return self.recognizer.recognize(content)

        future = self._recognition_pool.submit(call)
        # cancel() fails once the call is running, so a late start still gets its full timeout
        if not started.wait(slot_timeout) and future.cancel():
            raise RecognitionUnavailable(
                f"No recognition slot available after {slot_timeout:g}s",
                {"slot_timeout_seconds": slot_timeout, "max_workers": self.settings.max_workers},
            )
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as e:
            future.cancel()
            raise RecognitionFailure(
                f"Text recognition timed out after {timeout:g}s", {"timeout_seconds": timeout}
            ) from e
        except RecognitionFailure:
            raise
        except Exception as e:
            raise RecognitionFailure(
                f"Text recognition failed: {e}", {"reason": type(e).__name__}
            ) from e

    def _analyze_image(self, content: bytes, document_id: str) -> TamperingSignal | None:
        try:
            return self.forensics.analyze(content)
        except Exception as e:
            logger.error("Image forensics failed for document %s, no signal: %s", document_id, e)
            return None

    def _evaluate(
        self,
        document: Document,
        fields: list[ExtractedField],
        warnings: list[ValidationFinding],
        errors: list[ValidationFinding],
        detect_fraud_enabled: bool,
        tampering: TamperingSignal | None,
    ) -> ValidationResult:
        """Cross-validate, fraud-check, record the result and settle the status."""
        comparable = comparable_values(fields)

        # ── Cross-validation against the case snapshot ──────────────
        siblings = [
            Sibling.from_snapshot(sibling, sibling_fields)
            for sibling, sibling_fields in self.store.case_snapshot(
                document.case_id, exclude_document_id=document.id
            )
        ]
        cross = cross_validate(document.effective_type, comparable, siblings)

        # ── Fraud heuristics ────────────────────────────────────────
        fraud = FraudDetection()
        if detect_fraud_enabled:
            duplicates = find_duplicates(
                document,
                self.store.find_documents_by_hash(document.content_hash),
                self.settings.duplicate_scope,
            )
            fraud = detect_fraud(
                FraudContext(document=document, fields=comparable, duplicates=duplicates, tampering=tampering)
            )
            fraud_warnings, fraud_errors = fraud_findings(fraud)
            warnings = warnings + fraud_warnings
            errors = errors + fraud_errors

        # ── Applicant's declared data ───────────────────────────────
        declared = None
        if document.declared_data:
            declared, declared_warnings = check_declared_data(
                document.effective_type, comparable, document.declared_data
            )
            warnings = warnings + declared_warnings

        # ── Verdict ─────────────────────────────────────────────────
        status = combine_verdicts(
            cross.status,
            needs_review=bool(errors) or (declared is not None and not declared.consistent),
        )
        if _recognition_failed(errors):
            confidence = 0
        elif cross.matches:
            confidence = round(cross.score * 100)
        else:
            confidence = document.extraction_confidence

        now = utcnow()
        result = ValidationResult(
            document_id=document.id,
            case_id=document.case_id,
            document_type=document.document_type,
            detected_type=document.detected_type,
            status=status,
            confidence=max(0, min(100, confidence)),
            ocr_confidence=document.ocr_confidence,
            extracted_data={f.field_name: f.normalized_value for f in fields},
            warnings=warnings,
            errors=errors,
            cross_validation=cross,
            fraud_detection=fraud,
            declared_data=declared,
            content_hash=document.content_hash,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_validation_result(result)

        if not self.store.compare_and_set_status(document.id, AUTOMATIC_SOURCES, status):
            logger.info(
                "Document %s is no longer pending; verdict %s recorded without a status change",
                document.id, status.value,
            )

        logger.info(
            "Document %s: status=%s confidence=%d score=%.3f fraud=%d (%d warnings, %d errors)",
            document.id, status.value, result.confidence, cross.score,
            fraud.confidence, len(warnings), len(errors),
        )
        return result


# ─── Module Helpers ──────────────────────────────────────────────────


def _build_store(settings: Settings) -> ValidationStore:
    if settings.database_url:
        from .sql_store import SqlValidationStore

        return SqlValidationStore(settings.database_url)
    return InMemoryValidationStore()


def _llm_classifier(settings: Settings) -> DocumentClassifier | None:
    if not settings.openai_api_key:
        return None
    return LLMDocumentClassifier(api_key=settings.openai_api_key, model=settings.llm_model)


def _build_classifier(settings: Settings) -> DocumentClassifier:
    keyword = KeywordDocumentClassifier()
    llm = _llm_classifier(settings)
    if llm is None:
        return keyword
    return FallbackClassifier(llm, keyword)


def _extraction_confidence(required: list[str], found: dict[str, str], ocr_confidence: float) -> int:
    """Share of expected fields found, scaled by the OCR confidence."""
    if required:
        ratio = sum(1 for name in required if name in found) / len(required)
    else:
        ratio = 1.0 if found else 0.0
    return round(ratio * ocr_confidence)


def _recognition_failed(errors: list[ValidationFinding]) -> bool:
    return any(e.code in _RECOGNITION_CODES for e in errors)


def _previous_tampering(detection: FraudDetection) -> TamperingSignal | None:
    """Forensics needs the original bytes, so a revalidation reuses the last signal."""
    for signal in detection.details:
        if signal.type == "image_tampering":
            return TamperingSignal(tampered=True, confidence=signal.confidence, details=signal.details)
    return None

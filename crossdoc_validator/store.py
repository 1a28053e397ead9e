"""
Validation store — the only mutable shared resource of the engine.

Logical layout (independent of the storage engine):
  documents          one row per uploaded file; only status changes later
  extracted_fields   flat (document, field) rows, replaced as a whole set
  validation_results append-only, one row per validation run or review
  review_actions     append-only audit log of manual overrides
  field_corrections  append-only audit log of reviewer-typed field values

Concurrency contract:
  - a document and its field set become visible together, never half-written
  - case snapshots are consistent reads
  - validation results are inserted, never updated
  - the document status is written by compare-and-set, per document
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Iterable, Protocol

from .exceptions import DocumentNotFound, PersistenceFailure
from .models import (
    Document,
    DocumentStatus,
    ExtractedField,
    FieldCorrection,
    ReviewAction,
    ValidationResult,
    utcnow,
)


class ValidationStore(Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...

    def add_document(self, document: Document, fields: Iterable[ExtractedField] = ()) -> Document: ...

    def get_document(self, document_id: str) -> Document | None: ...

    def list_documents_by_case(self, case_id: str) -> list[Document]: ...

    def find_documents_by_hash(self, content_hash: str) -> list[Document]: ...

    def replace_extracted_fields(
        self,
        document_id: str,
        fields: Iterable[ExtractedField],
        corrections: Iterable[FieldCorrection] = (),
    ) -> None: ...

    def list_field_corrections(self, document_id: str) -> list[FieldCorrection]: ...

    def get_extracted_fields(self, document_id: str) -> list[ExtractedField]: ...

    def case_snapshot(
        self, case_id: str, exclude_document_id: str | None = None
    ) -> list[tuple[Document, list[ExtractedField]]]: ...

    def insert_validation_result(self, result: ValidationResult) -> ValidationResult: ...

    def get_validation_result(self, validation_id: str) -> ValidationResult | None: ...

    def list_validation_results(self, document_id: str) -> list[ValidationResult]: ...

    def compare_and_set_status(
        self,
        document_id: str,
        allowed_from: Iterable[DocumentStatus],
        new_status: DocumentStatus,
    ) -> bool: ...

    def record_review(self, action: ReviewAction, result: ValidationResult) -> bool: ...

    def list_reviews(self, document_id: str) -> list[ReviewAction]: ...

    def list_documents_by_status(
        self, status: DocumentStatus, case_id: str | None = None
    ) -> list[Document]: ...

    def status_counts(self, case_id: str | None = None) -> dict[DocumentStatus, int]: ...


class InMemoryValidationStore:
    """Thread-safe, process-local store. The default when no database is configured.

    One table lock guards multi-table reads and writes; status writes
    additionally take a per-document lock so updates to different
    documents never wait on each other's compare-and-set.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._document_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._documents: dict[str, Document] = {}
        self._fields: dict[str, list[ExtractedField]] = {}
        self._results: dict[str, ValidationResult] = {}
        self._results_by_document: defaultdict[str, list[str]] = defaultdict(list)
        self._reviews: defaultdict[str, list[ReviewAction]] = defaultdict(list)
        self._corrections: defaultdict[str, list[FieldCorrection]] = defaultdict(list)

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass

    # ─── Documents ───────────────────────────────────────────────────

    def add_document(self, document: Document, fields: Iterable[ExtractedField] = ()) -> Document:
        field_list = [f.model_copy() for f in fields]
        with self._lock:
            if document.id in self._documents:
                raise PersistenceFailure(
                    f"Document '{document.id}' already exists", {"document_id": document.id}
                )
            self._documents[document.id] = document.model_copy(deep=True)
            self._fields[document.id] = field_list
        return document.model_copy(deep=True)

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    def list_documents_by_case(self, case_id: str) -> list[Document]:
        with self._lock:
            return self._sorted(d for d in self._documents.values() if d.case_id == case_id)

    def find_documents_by_hash(self, content_hash: str) -> list[Document]:
        with self._lock:
            return self._sorted(
                d for d in self._documents.values() if d.content_hash == content_hash
            )

    def list_documents_by_status(
        self, status: DocumentStatus, case_id: str | None = None
    ) -> list[Document]:
        with self._lock:
            return self._sorted(
                d
                for d in self._documents.values()
                if d.status is status and (case_id is None or d.case_id == case_id)
            )

    def status_counts(self, case_id: str | None = None) -> dict[DocumentStatus, int]:
        counts = {status: 0 for status in DocumentStatus}
        with self._lock:
            for document in self._documents.values():
                if case_id is None or document.case_id == case_id:
                    counts[document.status] += 1
        return counts

    # ─── Extracted Fields ────────────────────────────────────────────

    def replace_extracted_fields(
        self,
        document_id: str,
        fields: Iterable[ExtractedField],
        corrections: Iterable[FieldCorrection] = (),
    ) -> None:
        """Swap the whole field set and log the corrections that produced it, together."""
        field_list = [f.model_copy() for f in fields]
        correction_list = [c.model_copy() for c in corrections]
        with self._lock:
            self._require(document_id)
            self._fields[document_id] = field_list
            self._corrections[document_id].extend(correction_list)

    def list_field_corrections(self, document_id: str) -> list[FieldCorrection]:
        with self._lock:
            return [c.model_copy() for c in self._corrections.get(document_id, [])]

    def get_extracted_fields(self, document_id: str) -> list[ExtractedField]:
        with self._lock:
            return [f.model_copy() for f in self._fields.get(document_id, [])]

    def case_snapshot(
        self, case_id: str, exclude_document_id: str | None = None
    ) -> list[tuple[Document, list[ExtractedField]]]:
        with self._lock:
            return [
                (document, [f.model_copy() for f in self._fields.get(document.id, [])])
                for document in self.list_documents_by_case(case_id)
                if document.id != exclude_document_id
            ]

    # ─── Validation Results ──────────────────────────────────────────

    def insert_validation_result(self, result: ValidationResult) -> ValidationResult:
        with self._lock:
            self._require(result.document_id)
            if result.id in self._results:
                raise PersistenceFailure(
                    f"Validation result '{result.id}' already exists",
                    {"validation_id": result.id},
                )
            self._results[result.id] = result.model_copy(deep=True)
            self._results_by_document[result.document_id].append(result.id)
        return result

    def get_validation_result(self, validation_id: str) -> ValidationResult | None:
        with self._lock:
            result = self._results.get(validation_id)
            return result.model_copy(deep=True) if result else None

    def list_validation_results(self, document_id: str) -> list[ValidationResult]:
        with self._lock:
            return [
                self._results[result_id].model_copy(deep=True)
                for result_id in self._results_by_document.get(document_id, [])
            ]

    # ─── Status & Reviews ────────────────────────────────────────────

    def compare_and_set_status(
        self,
        document_id: str,
        allowed_from: Iterable[DocumentStatus],
        new_status: DocumentStatus,
    ) -> bool:
        allowed = frozenset(allowed_from)
        with self._document_lock(document_id):
            with self._lock:
                document = self._require(document_id)
                if document.status not in allowed:
                    return False
                self._documents[document_id] = document.model_copy(
                    update={"status": new_status, "updated_at": utcnow()}
                )
                return True

    def record_review(self, action: ReviewAction, result: ValidationResult) -> bool:
        """Insert the review row and move the status, unless the status moved first."""
        with self._document_lock(action.document_id):
            with self._lock:
                document = self._require(action.document_id)
                if document.status is not action.previous_status:
                    return False
                self.insert_validation_result(result)
                self._reviews[action.document_id].append(action.model_copy())
                self._documents[action.document_id] = document.model_copy(
                    update={"status": action.new_status, "updated_at": utcnow()}
                )
                return True

    def list_reviews(self, document_id: str) -> list[ReviewAction]:
        with self._lock:
            return [a.model_copy() for a in self._reviews.get(document_id, [])]

    # ─── Internal Helpers ────────────────────────────────────────────

    def _document_lock(self, document_id: str) -> threading.Lock:
        with self._lock:
            return self._document_locks[document_id]

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    @staticmethod
    def _sorted(documents: Iterable[Document]) -> list[Document]:
        return [
            d.model_copy(deep=True)
            for d in sorted(documents, key=lambda d: (d.created_at, d.id))
        ]

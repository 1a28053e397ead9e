"""
SQLAlchemy-backed validation store.

Same contract as InMemoryValidationStore, persisted in five tables. Every
operation runs in its own transaction; driver errors surface as
PersistenceFailure and are never swallowed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import DocumentNotFound, PersistenceFailure
from .models import (
    Document,
    DocumentStatus,
    DocumentType,
    ExtractedField,
    FieldCorrection,
    ReviewAction,
    ValidationResult,
    utcnow,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


# ─── Tables ──────────────────────────────────────────────────────────


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(String(64), primary_key=True)
    case_id = Column(String(128), nullable=False, index=True)
    document_type = Column(String(32), nullable=False)
    detected_type = Column(String(32), nullable=True)
    raw_text = Column(Text, nullable=False, default="")
    ocr_confidence = Column(Float, nullable=False, default=0.0)
    content_hash = Column(String(64), nullable=False, index=True)
    extraction_confidence = Column(Integer, nullable=False, default=0)
    declared_data = Column(JSON, nullable=False, default=dict)
    status = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ExtractedFieldRow(Base):
    __tablename__ = "extracted_fields"
    __table_args__ = (UniqueConstraint("document_id", "field_name"),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(64), ForeignKey("documents.id"), nullable=False, index=True)
    field_name = Column(String(64), nullable=False)
    raw_value = Column(Text, nullable=False)
    normalized_value = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    source = Column(String(16), nullable=False)
    comparable = Column(Boolean, nullable=False, default=True)


class ValidationResultRow(Base):
    __tablename__ = "validation_results"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    document_id = Column(String(64), ForeignKey("documents.id"), nullable=False, index=True)
    case_id = Column(String(128), nullable=False)
    status = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=False)  # Full ValidationResult, JSON mode
    created_at = Column(DateTime(timezone=True), nullable=False)


class ReviewActionRow(Base):
    __tablename__ = "review_actions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    document_id = Column(String(64), ForeignKey("documents.id"), nullable=False, index=True)
    validation_id = Column(String(64), nullable=False)
    reviewer_id = Column(String(128), nullable=False)
    previous_status = Column(String(32), nullable=False)
    new_status = Column(String(32), nullable=False)
    notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=False)


class FieldCorrectionRow(Base):
    __tablename__ = "field_corrections"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    document_id = Column(String(64), ForeignKey("documents.id"), nullable=False, index=True)
    field_name = Column(String(64), nullable=False)
    previous_value = Column(Text, nullable=True)
    corrected_value = Column(Text, nullable=False)
    reviewer_id = Column(String(128), nullable=False)
    notes = Column(Text, nullable=True)
    corrected_at = Column(DateTime(timezone=True), nullable=False)


# ─── Store ───────────────────────────────────────────────────────────


class SqlValidationStore:
    """ValidationStore over any SQLAlchemy database.

    Usage:
        store = SqlValidationStore("postgresql+psycopg2://user:pw@db/validation")
        store.start()   # creates missing tables
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                raise ValueError("SqlValidationStore needs a database_url or an engine")
            engine = _create_engine(database_url)
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    def start(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Could not create validation tables", {"reason": str(e)}) from e
        logger.info("Validation tables ready on %s", self.engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self.engine.dispose()

    # ─── Documents ───────────────────────────────────────────────────

    def add_document(self, document: Document, fields: Iterable[ExtractedField] = ()) -> Document:
        with self._session() as session:
            session.add(_document_row(document))
            session.flush()
            session.add_all(_field_row(f) for f in fields)
        return document.model_copy()

    def get_document(self, document_id: str) -> Document | None:
        with self._session() as session:
            row = session.get(DocumentRow, document_id)
            return _to_document(row) if row else None

    def list_documents_by_case(self, case_id: str) -> list[Document]:
        return self._documents_where(DocumentRow.case_id == case_id)

    def find_documents_by_hash(self, content_hash: str) -> list[Document]:
        return self._documents_where(DocumentRow.content_hash == content_hash)

    def list_documents_by_status(
        self, status: DocumentStatus, case_id: str | None = None
    ) -> list[Document]:
        conditions = [DocumentRow.status == status.value]
        if case_id is not None:
            conditions.append(DocumentRow.case_id == case_id)
        return self._documents_where(*conditions)

    def status_counts(self, case_id: str | None = None) -> dict[DocumentStatus, int]:
        stmt = select(DocumentRow.status, func.count()).group_by(DocumentRow.status)
        if case_id is not None:
            stmt = stmt.where(DocumentRow.case_id == case_id)
        counts = {status: 0 for status in DocumentStatus}
        with self._session() as session:
            for status, count in session.execute(stmt):
                counts[DocumentStatus(status)] = count
        return counts

    # ─── Extracted Fields ────────────────────────────────────────────

    def replace_extracted_fields(
        self,
        document_id: str,
        fields: Iterable[ExtractedField],
        corrections: Iterable[FieldCorrection] = (),
    ) -> None:
        with self._session() as session:
            self._require(session, document_id)
            session.execute(delete(ExtractedFieldRow).where(ExtractedFieldRow.document_id == document_id))
            session.add_all(_field_row(f) for f in fields)
            session.add_all(_correction_row(c) for c in corrections)

    def list_field_corrections(self, document_id: str) -> list[FieldCorrection]:
        with self._session() as session:
            rows = session.scalars(
                select(FieldCorrectionRow)
                .where(FieldCorrectionRow.document_id == document_id)
                .order_by(FieldCorrectionRow.seq)
            )
            return [_to_correction(row) for row in rows]

    def get_extracted_fields(self, document_id: str) -> list[ExtractedField]:
        with self._session() as session:
            rows = session.scalars(
                select(ExtractedFieldRow)
                .where(ExtractedFieldRow.document_id == document_id)
                .order_by(ExtractedFieldRow.seq)
            )
            return [_to_field(row) for row in rows]

    def case_snapshot(
        self, case_id: str, exclude_document_id: str | None = None
    ) -> list[tuple[Document, list[ExtractedField]]]:
        with self._session() as session:
            stmt = (
                select(DocumentRow)
                .where(DocumentRow.case_id == case_id)
                .order_by(DocumentRow.created_at, DocumentRow.id)
            )
            if exclude_document_id is not None:
                stmt = stmt.where(DocumentRow.id != exclude_document_id)
            documents = [_to_document(row) for row in session.scalars(stmt)]

            fields: dict[str, list[ExtractedField]] = {d.id: [] for d in documents}
            if documents:
                rows = session.scalars(
                    select(ExtractedFieldRow)
                    .where(ExtractedFieldRow.document_id.in_(list(fields)))
                    .order_by(ExtractedFieldRow.seq)
                )
                for row in rows:
                    fields[row.document_id].append(_to_field(row))

        return [(d, fields[d.id]) for d in documents]

    # ─── Validation Results ──────────────────────────────────────────

    def insert_validation_result(self, result: ValidationResult) -> ValidationResult:
        with self._session() as session:
            self._require(session, result.document_id)
            session.add(_result_row(result))
        return result

    def get_validation_result(self, validation_id: str) -> ValidationResult | None:
        with self._session() as session:
            row = session.scalars(
                select(ValidationResultRow).where(ValidationResultRow.id == validation_id)
            ).first()
            return ValidationResult.model_validate(row.payload) if row else None

    def list_validation_results(self, document_id: str) -> list[ValidationResult]:
        with self._session() as session:
            rows = session.scalars(
                select(ValidationResultRow)
                .where(ValidationResultRow.document_id == document_id)
                .order_by(ValidationResultRow.seq)
            )
            return [ValidationResult.model_validate(row.payload) for row in rows]

    # ─── Status & Reviews ────────────────────────────────────────────

    def compare_and_set_status(
        self,
        document_id: str,
        allowed_from: Iterable[DocumentStatus],
        new_status: DocumentStatus,
    ) -> bool:
        allowed = [s.value for s in allowed_from]
        with self._session() as session:
            return self._conditional_status_update(session, document_id, allowed, new_status)

    def record_review(self, action: ReviewAction, result: ValidationResult) -> bool:
        """Insert the review row and move the status, unless the status moved first."""
        with self._session() as session:
            moved = self._conditional_status_update(
                session, action.document_id, [action.previous_status.value], action.new_status
            )
            if not moved:
                return False
            session.add(_result_row(result))
            session.add(
                ReviewActionRow(
                    id=action.id,
                    document_id=action.document_id,
                    validation_id=action.validation_id,
                    reviewer_id=action.reviewer_id,
                    previous_status=action.previous_status.value,
                    new_status=action.new_status.value,
                    notes=action.notes,
                    reviewed_at=action.reviewed_at,
                )
            )
            return True

    def list_reviews(self, document_id: str) -> list[ReviewAction]:
        with self._session() as session:
            rows = session.scalars(
                select(ReviewActionRow)
                .where(ReviewActionRow.document_id == document_id)
                .order_by(ReviewActionRow.seq)
            )
            return [
                ReviewAction(
                    id=row.id,
                    document_id=row.document_id,
                    validation_id=row.validation_id,
                    reviewer_id=row.reviewer_id,
                    previous_status=DocumentStatus(row.previous_status),
                    new_status=DocumentStatus(row.new_status),
                    notes=row.notes,
                    reviewed_at=_aware(row.reviewed_at),
                )
                for row in rows
            ]

    # ─── Internal Helpers ────────────────────────────────────────────

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Validation store operation failed: %s", e)
            raise PersistenceFailure("Validation store operation failed", {"reason": str(e)}) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _documents_where(self, *conditions) -> list[Document]:
        with self._session() as session:
            rows = session.scalars(
                select(DocumentRow).where(*conditions).order_by(DocumentRow.created_at, DocumentRow.id)
            )
            return [_to_document(row) for row in rows]

    @staticmethod
    def _require(session: Session, document_id: str) -> DocumentRow:
        row = session.get(DocumentRow, document_id)
        if row is None:
            raise DocumentNotFound(document_id)
        return row

    def _conditional_status_update(
        self,
        session: Session,
        document_id: str,
        allowed: list[str],
        new_status: DocumentStatus,
    ) -> bool:
        moved = session.execute(
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.status.in_(allowed))
            .values(status=new_status.value, updated_at=utcnow())
        ).rowcount
        if moved:
            return True
        self._require(session, document_id)
        return False


# ─── Row Conversion ──────────────────────────────────────────────────


def _create_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(database_url, connect_args=connect_args)


def _aware(value: datetime) -> datetime:
    """SQLite drops the tzinfo of stored datetimes; everything here is UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _document_row(document: Document) -> DocumentRow:
    return DocumentRow(
        id=document.id,
        case_id=document.case_id,
        document_type=document.document_type.value,
        detected_type=document.detected_type.value if document.detected_type else None,
        raw_text=document.raw_text,
        ocr_confidence=document.ocr_confidence,
        content_hash=document.content_hash,
        extraction_confidence=document.extraction_confidence,
        declared_data=dict(document.declared_data),
        status=document.status.value,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        case_id=row.case_id,
        document_type=DocumentType(row.document_type),
        detected_type=DocumentType(row.detected_type) if row.detected_type else None,
        raw_text=row.raw_text,
        ocr_confidence=row.ocr_confidence,
        content_hash=row.content_hash,
        extraction_confidence=row.extraction_confidence,
        declared_data=row.declared_data or {},
        status=DocumentStatus(row.status),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _field_row(extracted: ExtractedField) -> ExtractedFieldRow:
    return ExtractedFieldRow(
        document_id=extracted.document_id,
        field_name=extracted.field_name,
        raw_value=extracted.raw_value,
        normalized_value=extracted.normalized_value,
        confidence=extracted.confidence,
        source=extracted.source,
        comparable=extracted.comparable,
    )


def _to_field(row: ExtractedFieldRow) -> ExtractedField:
    return ExtractedField(
        document_id=row.document_id,
        field_name=row.field_name,
        raw_value=row.raw_value,
        normalized_value=row.normalized_value,
        confidence=row.confidence,
        source=row.source,
        comparable=row.comparable,
    )


def _correction_row(correction: FieldCorrection) -> FieldCorrectionRow:
    return FieldCorrectionRow(
        id=correction.id,
        document_id=correction.document_id,
        field_name=correction.field_name,
        previous_value=correction.previous_value,
        corrected_value=correction.corrected_value,
        reviewer_id=correction.reviewer_id,
        notes=correction.notes,
        corrected_at=correction.corrected_at,
    )


def _to_correction(row: FieldCorrectionRow) -> FieldCorrection:
    return FieldCorrection(
        id=row.id,
        document_id=row.document_id,
        field_name=row.field_name,
        previous_value=row.previous_value,
        corrected_value=row.corrected_value,
        reviewer_id=row.reviewer_id,
        notes=row.notes,
        corrected_at=_aware(row.corrected_at),
    )


def _result_row(result: ValidationResult) -> ValidationResultRow:
    return ValidationResultRow(
        id=result.id,
        document_id=result.document_id,
        case_id=result.case_id,
        status=result.status.value,
        payload=result.model_dump(mode="json"),
        created_at=result.created_at,
    )

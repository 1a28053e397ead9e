"""
Cross-Document Validator — FastAPI Server
==========================================

RESTful API over the document validation engine.

Endpoints:
    POST /documents                        Upload a document into a case
    POST /documents/{id}/revalidate        Re-run cross-validation for a document
    POST /documents/{id}/corrections       Replace extracted values by hand and revalidate
    POST /validations/{id}/review          Record a reviewer's verdict
    GET  /documents/{id}                   Document and its current status
    GET  /documents/{id}/validations       Full validation history
    GET  /documents/{id}/corrections       Audit log of manual field corrections
    GET  /cases/{case_id}/documents        All documents of a case
    GET  /review-queue                     Documents waiting for a reviewer
    GET  /metrics                          Counts per status, verification rate
    GET  /health                           Health check / readiness check

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
    http://localhost:8000/redoc            # ReDoc (alternative)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from crossdoc_validator import __version__
from crossdoc_validator.exceptions import (
    DocumentNotFound,
    DocumentValidationError,
    InvalidFieldCorrection,
    InvalidStatusTransition,
    NotInitialized,
    PersistenceFailure,
    ValidationNotFound,
)
from crossdoc_validator.models import (
    Document,
    DocumentStatus,
    DocumentType,
    FieldCorrection,
    ProcessOptions,
    ValidationMetrics,
    ValidationResult,
)
from crossdoc_validator.pipeline import DocumentValidationEngine

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1_048_576

_DECLARED_DATA = TypeAdapter(dict[str, str])


# ─── Application Lifespan (start the engine) ────────────────────────

_engine: DocumentValidationEngine | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store and worker pools on startup, release them on shutdown."""
    global _engine  # noqa: PLW0603
    engine = DocumentValidationEngine()
    engine.start()
    _engine = engine
    yield
    _engine = None
    engine.shutdown()


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Cross-Document Validator API",
    description=(
        "Field extraction and cross-validation for identity and registration "
        "documents. Each upload is compared with every other document of its "
        "case, checked for fraud signals and recorded with an auditable verdict."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ReviewRequest(BaseModel):
    """Request body for the /validations/{id}/review endpoint."""

    status: DocumentStatus = Field(description="Reviewer verdict: valid or invalid.")
    reviewer_id: str = Field(..., min_length=1)
    notes: Optional[str] = None

    model_config = {"json_schema_extra": {"example": {
        "status": "valid",
        "reviewer_id": "analyst-7",
        "notes": "Name spelled differently on the school record, same person.",
    }}}


class CorrectionRequest(BaseModel):
    """Request body for the /documents/{id}/corrections endpoint."""

    fields: dict[str, str] = Field(..., min_length=1, description="field name → corrected value")
    reviewer_id: str = Field(..., min_length=1)
    notes: Optional[str] = None

    model_config = {"json_schema_extra": {"example": {
        "fields": {"tax_id": "529.982.247-25"},
        "reviewer_id": "analyst-7",
        "notes": "Last digit misread on the scan.",
    }}}


class HealthResponse(BaseModel):
    status: str
    version: str
    store: str


# ─── Error Mapping ───────────────────────────────────────────────────

_STATUS_CODES: dict[type[DocumentValidationError], int] = {
    NotInitialized: 503,
    DocumentNotFound: 404,
    ValidationNotFound: 404,
    InvalidStatusTransition: 409,
    InvalidFieldCorrection: 422,
    PersistenceFailure: 500,
}


@app.exception_handler(DocumentValidationError)
async def _validation_error_handler(request: Request, exc: DocumentValidationError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": str(exc), "details": exc.details},
    )


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_engine() -> DocumentValidationEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Validation engine not initialised")
    return _engine


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/documents",
    summary="Upload a document into a case",
    tags=["Validation"],
    responses={
        413: {"description": "File too large (max 10 MB)"},
        422: {"description": "Empty file or unknown document type"},
        500: {"description": "The result could not be stored"},
        503: {"description": "Engine not yet initialised"},
    },
)
async def upload_document(
    file: UploadFile,
    case_id: str = Form(..., min_length=1),
    document_type: DocumentType = Form(DocumentType.OTHER),
    required_fields: Optional[str] = Form(
        None, description="Comma-separated field names; omit for the per-type defaults."
    ),
    declared_data: Optional[str] = Form(
        None, description='JSON object of values the applicant typed in, e.g. {"name": "Maria Santos"}.'
    ),
    detect_fraud: bool = Form(True),
) -> ValidationResult:
    """Run the full validation pipeline on one uploaded document.

    Returns the validation result with:
    - **status**: pending, valid, invalid or needs_review
    - **confidence**: 0-100
    - **cross_validation**: per-field matches against the other documents of the case
    - **fraud_detection**: triggered fraud heuristics
    - **declared_data**: agreement with the applicant's own form values, when given
    - **warnings / errors**: typed findings
    """
    engine = _get_engine()
    if file.size and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")

    try:
        declared = _DECLARED_DATA.validate_json(declared_data) if declared_data else {}
    except ValidationError as e:
        raise HTTPException(status_code=422, detail="declared_data must be a JSON object of strings") from e

    options = ProcessOptions(
        required_fields=(
            [f.strip() for f in required_fields.split(",") if f.strip()]
            if required_fields is not None
            else None
        ),
        detect_fraud=detect_fraud,
        declared_data=declared,
    )
    return await asyncio.to_thread(
        engine.process_document, content, document_type, case_id, options
    )


@app.post(
    "/documents/{document_id}/revalidate",
    summary="Re-run cross-validation against the current case",
    tags=["Validation"],
    responses={404: {"description": "Unknown document"}},
)
async def revalidate_document(document_id: str) -> ValidationResult:
    engine = _get_engine()
    return await asyncio.to_thread(engine.revalidate_document, document_id)


@app.post(
    "/validations/{validation_id}/review",
    summary="Record a reviewer's verdict",
    tags=["Review"],
    responses={
        404: {"description": "Unknown validation result"},
        409: {"description": "Status change not allowed"},
    },
)
def review_validation(validation_id: str, request: ReviewRequest) -> ValidationResult:
    """Settle a document as valid or invalid. Appends a new result row and an audit entry."""
    engine = _get_engine()
    return engine.update_validation_status(
        validation_id, request.status, request.reviewer_id, request.notes
    )


@app.post(
    "/documents/{document_id}/corrections",
    summary="Correct extracted fields by hand",
    tags=["Review"],
    responses={
        404: {"description": "Unknown document"},
        422: {"description": "Empty or unreadable corrected value"},
    },
)
async def correct_fields(document_id: str, request: CorrectionRequest) -> ValidationResult:
    """Replace extracted values with the reviewer's, log each change and revalidate the document."""
    engine = _get_engine()
    return await asyncio.to_thread(
        engine.correct_fields, document_id, request.fields, request.reviewer_id, request.notes
    )


@app.get(
    "/documents/{document_id}",
    summary="Get a document",
    tags=["Documents"],
    responses={404: {"description": "Unknown document"}},
)
def get_document(document_id: str) -> Document:
    return _get_engine().get_document(document_id)


@app.get(
    "/documents/{document_id}/validations",
    summary="Validation history of a document",
    tags=["Documents"],
    responses={404: {"description": "Unknown document"}},
)
def list_validations(document_id: str) -> list[ValidationResult]:
    return _get_engine().list_validation_history(document_id)


@app.get(
    "/documents/{document_id}/corrections",
    summary="Manual field corrections of a document",
    tags=["Review"],
    responses={404: {"description": "Unknown document"}},
)
def list_corrections(document_id: str) -> list[FieldCorrection]:
    return _get_engine().list_field_corrections(document_id)


@app.get(
    "/cases/{case_id}/documents",
    summary="Documents of a case",
    tags=["Documents"],
)
def list_case_documents(case_id: str) -> list[Document]:
    return _get_engine().list_documents_by_case(case_id)


@app.get(
    "/review-queue",
    summary="Documents waiting for a reviewer",
    tags=["Review"],
)
def review_queue(case_id: Optional[str] = None) -> list[Document]:
    return _get_engine().review_queue(case_id)


@app.get(
    "/metrics",
    summary="Document counts per status",
    tags=["System"],
)
def metrics(case_id: Optional[str] = None) -> ValidationMetrics:
    return _get_engine().get_metrics(case_id)


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Engine not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    engine = _get_engine()
    return HealthResponse(
        status="healthy",
        version=__version__,
        store=type(engine.store).__name__,
    )

"""
FastAPI endpoint tests for the Cross-Document Validator API.

Uses httpx + FastAPI TestClient. No real server, no LLM calls.
"""

from __future__ import annotations

import uuid

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from crossdoc_validator.classifier import KeywordDocumentClassifier
from crossdoc_validator.config import Settings
from crossdoc_validator.pipeline import DocumentValidationEngine
from crossdoc_validator.store import InMemoryValidationStore

client = TestClient(app)


def _make_engine() -> DocumentValidationEngine:
    return DocumentValidationEngine(
        Settings(database_url=None),
        store=InMemoryValidationStore(),
        classifier=KeywordDocumentClassifier(),
    )


@pytest.fixture(autouse=True)
def _warm_engine() -> None:
    """Start a fresh engine for every test (bypasses lifespan)."""
    engine = _make_engine()
    engine.start()
    api._engine = engine
    yield  # type: ignore[misc]
    api._engine = None
    engine.shutdown()


@pytest.fixture
def case_id() -> str:
    return f"case-{uuid.uuid4().hex[:8]}"


# ─── Sample recognized text (same person on both documents) ─────────

ID_CARD_TEXT = (
    "CARTEIRA DE IDENTIDADE\n"
    "Registro Geral: 12.345.678-9\n"
    "Data de Expedição: 10/02/2015\n"
    "Nome: Maria da Silva Santos\n"
    "Data de Nascimento: 15/03/1990\n"
    "CPF: 529.982.247-25"
)

TAX_ID_TEXT = (
    "Receita Federal do Brasil\n"
    "Cadastro de Pessoas Físicas\n"
    "CPF: {tax_id}\n"
    "Nome: MARIA SILVA SANTOS\n"
    "Data de Nascimento: 15/03/1990"
)


def _upload(case_id: str, text: str | bytes, document_type: str = "id_card", **form: str):
    content = text.encode("utf-8") if isinstance(text, str) else text
    return client.post(
        "/documents",
        files={"file": ("scan.txt", content, "text/plain")},
        data={"case_id": case_id, "document_type": document_type, **form},
    )


def _flagged_document(case_id: str) -> dict:
    """Upload a case whose tax numbers disagree; the id card lands in review."""
    _upload(case_id, TAX_ID_TEXT.format(tax_id="123.456.789-09"), "tax_id")
    return _upload(case_id, ID_CARD_TEXT).json()


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["store"] == "InMemoryValidationStore"

    def test_engine_missing_returns_503(self, monkeypatch) -> None:
        monkeypatch.setattr(api, "_engine", None)
        assert client.get("/health").status_code == 503

    def test_engine_not_started_returns_503(self, monkeypatch) -> None:
        monkeypatch.setattr(api, "_engine", _make_engine())
        resp = client.get("/metrics")
        assert resp.status_code == 503
        assert resp.json()["code"] == "NOT_INITIALIZED"


class TestUploadEndpoint:
    def test_first_document_is_pending(self, case_id) -> None:
        resp = _upload(case_id, ID_CARD_TEXT)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["case_id"] == case_id
        assert data["extracted_data"]["tax_id"] == "52998224725"

    def test_matching_case_is_valid(self, case_id) -> None:
        _upload(case_id, ID_CARD_TEXT)
        data = _upload(case_id, TAX_ID_TEXT.format(tax_id="529.982.247-25"), "tax_id").json()
        assert data["status"] == "valid"
        assert data["confidence"] == 100
        assert data["cross_validation"]["score"] == 1.0

    def test_other_upload_is_classified(self, case_id) -> None:
        data = _upload(case_id, ID_CARD_TEXT, "other").json()
        assert data["document_type"] == "other"
        assert data["detected_type"] == "id_card"

    def test_required_fields_form_value(self, case_id) -> None:
        data = _upload(case_id, ID_CARD_TEXT, required_fields="name, mother_name").json()
        gaps = [w["field"] for w in data["warnings"] if w["code"] == "EXTRACTION_GAP"]
        assert gaps == ["mother_name"]

    def test_binary_upload_needs_review(self, case_id) -> None:
        data = _upload(case_id, b"\xff\xd8\xff\xe0").json()
        assert data["status"] == "needs_review"
        assert data["errors"][0]["code"] == "RECOGNITION_FAILED"

    def test_empty_file_returns_422(self, case_id) -> None:
        assert _upload(case_id, b"").status_code == 422

    def test_unknown_document_type_returns_422(self, case_id) -> None:
        assert _upload(case_id, ID_CARD_TEXT, "passport").status_code == 422

    def test_missing_case_returns_422(self) -> None:
        resp = client.post("/documents", files={"file": ("scan.txt", b"Nome: Ana", "text/plain")})
        assert resp.status_code == 422

    def test_same_file_in_another_case_is_flagged(self, case_id) -> None:
        _upload(case_id, ID_CARD_TEXT)
        data = _upload(f"{case_id}-other", ID_CARD_TEXT).json()
        assert data["status"] == "needs_review"
        assert data["fraud_detection"]["type"] == "duplicate_submission"

    def test_declared_data_form_value(self, case_id) -> None:
        declared = '{"name": "Maria da Silva Santos", "id_number": "98.765.432-1"}'
        data = _upload(case_id, ID_CARD_TEXT, declared_data=declared).json()
        assert data["status"] == "needs_review"
        assert data["declared_data"]["consistent"] is False
        assert [w["field"] for w in data["warnings"] if w["code"] == "DECLARED_DATA_MISMATCH"] == ["id_number"]

    @pytest.mark.parametrize("declared", ["not json", '["name"]', '{"name": 1}'])
    def test_malformed_declared_data_returns_422(self, case_id, declared) -> None:
        assert _upload(case_id, ID_CARD_TEXT, declared_data=declared).status_code == 422


class TestDocumentEndpoints:
    def test_get_document(self, case_id) -> None:
        result = _upload(case_id, ID_CARD_TEXT).json()
        data = client.get(f"/documents/{result['document_id']}").json()
        assert data["id"] == result["document_id"]
        assert data["status"] == "pending"

    def test_unknown_document_returns_404(self) -> None:
        resp = client.get("/documents/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["code"] == "DOCUMENT_NOT_FOUND"

    def test_case_listing(self, case_id) -> None:
        _upload(case_id, ID_CARD_TEXT)
        _upload(case_id, TAX_ID_TEXT.format(tax_id="529.982.247-25"), "tax_id")
        data = client.get(f"/cases/{case_id}/documents").json()
        assert [d["document_type"] for d in data] == ["id_card", "tax_id"]

    def test_revalidate_and_history(self, case_id) -> None:
        first = _upload(case_id, ID_CARD_TEXT).json()
        _upload(case_id, TAX_ID_TEXT.format(tax_id="529.982.247-25"), "tax_id")
        resp = client.post(f"/documents/{first['document_id']}/revalidate")
        assert resp.status_code == 200
        assert resp.json()["status"] == "valid"
        history = client.get(f"/documents/{first['document_id']}/validations").json()
        assert [r["status"] for r in history] == ["pending", "valid"]


class TestReviewEndpoints:
    def test_flagged_document_in_queue(self, case_id) -> None:
        flagged = _flagged_document(case_id)
        assert flagged["status"] == "needs_review"
        queue = client.get("/review-queue", params={"case_id": case_id}).json()
        assert [d["id"] for d in queue] == [flagged["document_id"]]

    def test_review_settles_document(self, case_id) -> None:
        flagged = _flagged_document(case_id)
        resp = client.post(
            f"/validations/{flagged['id']}/review",
            json={"status": "valid", "reviewer_id": "analyst-7", "notes": "typo on tax card"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "valid"
        assert data["review"]["previous_status"] == "needs_review"
        assert client.get("/review-queue", params={"case_id": case_id}).json() == []

    def test_non_terminal_target_returns_409(self, case_id) -> None:
        flagged = _flagged_document(case_id)
        resp = client.post(
            f"/validations/{flagged['id']}/review",
            json={"status": "pending", "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 409
        assert resp.json()["details"]["requested_status"] == "pending"

    def test_pending_document_returns_409(self, case_id) -> None:
        pending = _upload(case_id, ID_CARD_TEXT).json()
        resp = client.post(
            f"/validations/{pending['id']}/review",
            json={"status": "valid", "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 409
        assert resp.json()["details"]["current_status"] == "pending"

    def test_unknown_validation_returns_404(self) -> None:
        resp = client.post(
            "/validations/does-not-exist/review",
            json={"status": "valid", "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 404

    def test_metrics(self, case_id) -> None:
        flagged = _flagged_document(case_id)
        client.post(
            f"/validations/{flagged['id']}/review",
            json={"status": "invalid", "reviewer_id": "analyst-7"},
        )
        data = client.get("/metrics", params={"case_id": case_id}).json()
        assert data["total_documents"] == 2
        assert data["by_status"]["invalid"] == 1
        assert data["by_status"]["pending"] == 1
        assert data["verification_rate"] == 0.0


class TestCorrectionEndpoints:
    def test_correction_revalidates_and_is_logged(self, case_id) -> None:
        misread = _upload(case_id, TAX_ID_TEXT.format(tax_id="123.456.789-09"), "tax_id").json()
        _upload(case_id, ID_CARD_TEXT)
        resp = client.post(
            f"/documents/{misread['document_id']}/corrections",
            json={"fields": {"tax_id": "529.982.247-25"}, "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "valid"
        assert data["extracted_data"]["tax_id"] == "52998224725"

        log = client.get(f"/documents/{misread['document_id']}/corrections").json()
        assert [(c["field_name"], c["corrected_value"]) for c in log] == [("tax_id", "529.982.247-25")]

    def test_unreadable_value_returns_422(self, case_id) -> None:
        document = _upload(case_id, ID_CARD_TEXT).json()
        resp = client.post(
            f"/documents/{document['document_id']}/corrections",
            json={"fields": {"birth_date": "ontem"}, "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "INVALID_CORRECTION"

    def test_empty_fields_returns_422(self, case_id) -> None:
        document = _upload(case_id, ID_CARD_TEXT).json()
        resp = client.post(
            f"/documents/{document['document_id']}/corrections",
            json={"fields": {}, "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 422

    def test_unknown_document_returns_404(self) -> None:
        resp = client.post(
            "/documents/does-not-exist/corrections",
            json={"fields": {"name": "Ana"}, "reviewer_id": "analyst-7"},
        )
        assert resp.status_code == 404
        assert client.get("/documents/does-not-exist/corrections").status_code == 404

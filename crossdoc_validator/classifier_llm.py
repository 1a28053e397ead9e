"""
LLM-based document type classification using OpenAI structured output.

The LLM is only asked ONE question: which kind of document is this? It
never extracts or validates fields; that stays in deterministic code.

Design:
  - JSON mode enforced (structured output, not free text)
  - The answer is checked against the known type list; anything else is discarded
  - Graceful fallback: no API key or any failure → None → keyword classifier decides
"""

from __future__ import annotations

import json
import logging

from openai import OpenAI

from .classifier import Classification
from .models import DocumentType

logger = logging.getLogger(__name__)


# ─── System Prompt ───────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You classify OCR text from Brazilian identity and registration documents.

Pick exactly one document type:
  - "id_card"        identity card (RG / carteira de identidade)
  - "tax_id"         tax id registration (CPF)
  - "address_proof"  utility bill or other proof of address
  - "school_record"  school transcript, enrollment declaration or diploma
  - "birth_record"   birth certificate
  - "other"          none of the above

Return a JSON object with these exact keys:
{
    "document_type": "one of the values above",
    "confidence": number between 0 and 1
}

Do not extract any field values.
"""


class LLMDocumentClassifier:
    """Classify a document with a chat model; returns None when unsure or unavailable."""

    def __init__(self, api_key: str, model: str = "gpt-5", client: OpenAI | None = None):
        self.model = model
        self._client = client or OpenAI(api_key=api_key)

    def classify(self, text: str) -> Classification | None:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"Classify this OCR-scanned document:\n\n{text}",
                    },
                ],
                response_format={"type": "json_object"},
            )

            content = response.choices[0].message.content
            if content is None:
                logger.error("LLM returned empty content")
                return None
            data = json.loads(content)

            document_type = DocumentType(data.get("document_type"))
            confidence = float(data.get("confidence", 0.0))
        except (ValueError, TypeError) as e:
            logger.warning("LLM classification returned an unusable answer: %s", e)
            return None
        except Exception as e:
            logger.error("LLM classification failed: %s", e)
            return None

        if document_type is DocumentType.OTHER:
            return None

        logger.info("LLM classified document as %s (%.2f)", document_type.value, confidence)
        return Classification(document_type, max(0.0, min(1.0, confidence)))

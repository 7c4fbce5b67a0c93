"""Client for the Gemini ``generateContent`` REST endpoint.

Used for two things: feedback notes for evaluation criteria, and quiz
questions drafted from a PDF. Every failure (network, HTTP status, malformed
output) surfaces as ``SuggestionFailure``.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from training_center.errors import SuggestionFailure
from training_center.schemas import CriterionForNotes, GeneratedNote, Question
from training_center.settings import settings

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$")

NOTES_PROMPT = """You are an expert educational assessor writing internal evaluation notes for a student in a cybersecurity training program.
These notes are for the administration and will NOT be shared with the student. Keep the tone professional, direct and analytical.

Write one concise note in Arabic for each evaluation criterion based on its score (1-5, where 5 is best).
- High scores (4-5) are strengths.
- Average scores (3) meet expectations, with room for growth.
- Low scores (1-2) are areas of concern that require attention.

Write Arabic only, without English translations. Give only the feedback text and frame it around the student.

Criteria:
{criteria}

Answer with JSON of the form {{"notes": [{{"id": "<criterion id>", "note": "<note>"}}]}}.
"""

QUIZ_PROMPT = """You are an instructor preparing a quiz about "{topic}" from the attached PDF document.
Write exactly {count} questions based only on the document.
Each question has a "type" of "multiple-choice" (one correct option), "checkbox" (several correct options) or "short-answer".
Multiple-choice and checkbox questions have at least two distinct "options"; "answer" is the correct option text, or a list of option texts for checkbox questions.
Short-answer questions have no options and a short "answer".

Answer with JSON of the form {{"questions": [{{"question": "...", "type": "...", "options": [...], "answer": ...}}]}}.
"""


class _NotesPayload(BaseModel):
    notes: List[GeneratedNote]


_questions_adapter = TypeAdapter(List[Question])


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = base_url or f"{settings.gemini_base_url}/{self.model}:generateContent"
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.gemini_timeout_seconds, transport=transport
        )

    async def generate_json(self, parts: List[Dict[str, Any]]) -> Any:
        """Send one user turn and decode the JSON document the model answers with."""
        if not self.api_key:
            raise SuggestionFailure("GEMINI_API_KEY is not configured")

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            r = await self._client.post(self.base_url, params={"key": self.api_key}, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Gemini returned HTTP %s", exc.response.status_code)
            raise SuggestionFailure(f"AI service returned HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("Gemini request failed: %s", exc)
            raise SuggestionFailure("AI service is unreachable") from exc

        try:
            text = r.json()["candidates"][0]["content"]["parts"][0]["text"]
            return json.loads(_FENCE.sub("", text))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise SuggestionFailure("Unexpected response from the AI service") from exc

    async def generate_evaluation_notes(
        self, criteria: Sequence[CriterionForNotes]
    ) -> List[GeneratedNote]:
        if not criteria:
            return []
        lines = "\n".join(
            f'- Criterion ID: {c.id}, Name: "{c.name}", Score: {c.score}/5' for c in criteria
        )
        data = await self.generate_json([{"text": NOTES_PROMPT.format(criteria=lines)}])
        try:
            return _NotesPayload.model_validate(data).notes
        except ValidationError as exc:
            raise SuggestionFailure("AI notes did not match the expected format") from exc

    async def generate_quiz_questions(
        self, topic: str, num_questions: int, pdf_bytes: bytes
    ) -> List[Question]:
        """Draft questions about ``topic`` from a PDF. Ids are ``gen-<millis>-<index>``."""
        parts = [
            {"text": QUIZ_PROMPT.format(topic=topic, count=num_questions)},
            {
                "inline_data": {
                    "mime_type": "application/pdf",
                    "data": base64.b64encode(pdf_bytes).decode("ascii"),
                }
            },
        ]
        data = await self.generate_json(parts)
        if not isinstance(data, dict) or not isinstance(data.get("questions"), list):
            raise SuggestionFailure("The AI model returned an unexpected result.")

        stamp = int(time.time() * 1000)
        raw = []
        for i, item in enumerate(data["questions"]):
            if not isinstance(item, dict):
                raise SuggestionFailure("The AI model returned an unexpected result.")
            raw.append({**item, "id": f"gen-{stamp}-{i}", "options": item.get("options") or []})
        try:
            return _questions_adapter.validate_python(raw)
        except ValidationError as exc:
            raise SuggestionFailure("Generated questions are not valid") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

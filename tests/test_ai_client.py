"""GeminiClient against a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

from training_center.errors import SuggestionFailure
from training_center.schemas import CriterionForNotes
from training_center.services.ai_client import GeminiClient


def gemini_reply(payload, status_code=200):
    body = {"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]}
    return httpx.Response(status_code, json=body)


def make_client(handler, api_key="test-key"):
    return GeminiClient(api_key, base_url="https://gemini.test/generate", transport=httpx.MockTransport(handler))


def run(client, coro):
    async def go():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(go())


def test_notes_are_parsed_and_prompt_lists_criteria():
    seen = {}

    def handler(request):
        seen["key"] = request.url.params.get("key")
        seen["body"] = json.loads(request.content)
        return gemini_reply({"notes": [{"id": "personalSkills.teamwork", "note": "ممتاز"}]})

    client = make_client(handler)
    criteria = [CriterionForNotes(id="personalSkills.teamwork", name="التعاون ضمن الفريق", score=5)]

    notes = run(client, client.generate_evaluation_notes(criteria))

    assert [(n.id, n.note) for n in notes] == [("personalSkills.teamwork", "ممتاز")]
    assert seen["key"] == "test-key"
    prompt = seen["body"]["contents"][0]["parts"][0]["text"]
    assert "personalSkills.teamwork" in prompt
    assert "Score: 5/5" in prompt


def test_empty_criteria_make_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    client = make_client(handler)
    assert run(client, client.generate_evaluation_notes([])) == []


def test_http_error_becomes_suggestion_failure():
    client = make_client(lambda request: httpx.Response(429, json={"error": "quota"}))

    with pytest.raises(SuggestionFailure):
        run(client, client.generate_evaluation_notes([CriterionForNotes(id="a", name="A", score=3)]))


def test_malformed_output_becomes_suggestion_failure():
    client = make_client(lambda request: gemini_reply({"something": "else"}))

    with pytest.raises(SuggestionFailure):
        run(client, client.generate_evaluation_notes([CriterionForNotes(id="a", name="A", score=3)]))


def test_missing_api_key():
    client = GeminiClient("", base_url="https://gemini.test/generate")
    client.api_key = None

    with pytest.raises(SuggestionFailure):
        run(client, client.generate_json([{"text": "hi"}]))


def test_quiz_questions_get_generated_ids_and_pdf_is_inlined():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return gemini_reply(
            {
                "questions": [
                    {"question": "What is TLS?", "type": "short-answer", "answer": "a protocol"},
                    {
                        "question": "Pick the ciphers",
                        "type": "checkbox",
                        "options": ["AES", "HTTP", "ChaCha20"],
                        "answer": ["AES", "ChaCha20"],
                    },
                ]
            }
        )

    client = make_client(handler)
    questions = run(client, client.generate_quiz_questions("Cryptography", 2, b"%PDF-1.4 fake"))

    assert [q.type for q in questions] == ["short-answer", "checkbox"]
    assert all(q.id.startswith("gen-") and q.id.endswith(f"-{i}") for i, q in enumerate(questions))
    assert questions[1].answer == frozenset({"AES", "ChaCha20"})
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[1]["inline_data"]["mime_type"] == "application/pdf"

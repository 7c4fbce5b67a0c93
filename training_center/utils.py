"""Utility functions for sanitization and validation."""

from typing import Optional

import bleach

PDF_MAGIC = b"%PDF"
MAX_GENERATED_QUESTIONS = 10


def sanitize_note(text: Optional[str]) -> str:
    """Sanitize evaluation note text.

    Notes are plain text, so any HTML/script content is stripped.
    """
    if not text:
        return ""
    return bleach.clean(text, tags=[], strip=True).strip()


def sanitize_text(text: Optional[str]) -> Optional[str]:
    """Strip HTML from free text such as quiz descriptions."""
    if text is None:
        return None
    return bleach.clean(text, tags=[], strip=True).strip()


def validate_generation_inputs(topic: str, num_questions, pdf_bytes: bytes) -> dict:
    """Validate the AI quiz generator form.

    Returns:
        Dict of field name -> error message, empty if everything is valid
    """
    errors = {}
    if len((topic or "").strip()) < 3:
        errors["topic"] = "Topic must be at least 3 characters long."

    try:
        count = int(num_questions)
    except (TypeError, ValueError):
        count = 0
    if count < 1:
        errors["num_questions"] = "Please enter a number of questions."
    elif count > MAX_GENERATED_QUESTIONS:
        errors["num_questions"] = f"You can generate up to {MAX_GENERATED_QUESTIONS} questions at a time."

    if not pdf_bytes:
        errors["pdf_file"] = "PDF file is required."
    elif not pdf_bytes.startswith(PDF_MAGIC):
        errors["pdf_file"] = "The uploaded file is not a PDF."
    return errors

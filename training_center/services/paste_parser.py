"""Turn a pasted question block into a question with options and answers.

Supported layout::

    Which of these are prime numbers? (choose 2)
    a) 2 *
    b) 4
    c) 5 (correct)
    d) 9
    Answer: A,C

Option labels may be ``A)``, ``(a)``, ``A.``, ``1-``, ``B:`` or a bullet (``-``,
``•``). Correct options are marked by a trailing ``*``, a trailing
``(correct)`` or an ``Answer(s):`` line listing labels or numbers.
"""

import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

OPTION_PREFIX = re.compile(r"^\s*(?:[-•]\s+|\(?\s*([A-Za-z]|\d{1,3})\s*\)?[.):–—-]\s*)")
_LABEL = re.compile(r"^\(?\s*([A-Za-z]|\d{1,3})")
_ANSWER_LINE = re.compile(r"^\s*answers?\s*:", re.IGNORECASE)
_EXPLICIT_ANSWERS = re.compile(r"^\s*answers?\s*:\s*([A-Za-z0-9 ,]+)\s*$", re.IGNORECASE | re.MULTILINE)
_CORRECT_MARKER = re.compile(r"\*\s*$|\(correct\)$", re.IGNORECASE)
_CHOOSE_N = re.compile(r"\(choose\s*\d+\)", re.IGNORECASE)


class ParsedQuestion(BaseModel):
    question: str
    type: Literal["multiple-choice", "checkbox"] = "multiple-choice"
    options: list[str] = Field(default_factory=list)
    answer: Union[str, list[str]] = ""


def _explicit_answers(raw: str) -> set[str]:
    out: set[str] = set()
    for match in _EXPLICIT_ANSWERS.finditer(raw):
        for ch in re.sub(r"[,\s]+", "", match.group(1)):
            out.add(ch.upper() if ch.isalpha() else ch)
    return out


def _letter_to_number(label: str) -> Optional[str]:
    if len(label) == 1 and "A" <= label <= "Z":
        return str(ord(label) - ord("A") + 1)
    return None


def _is_numbered(line: str) -> bool:
    match = OPTION_PREFIX.match(line)
    return bool(match and match.group(1) and match.group(1).isdigit())


def parse_pasted_question(raw: Optional[str]) -> Optional[ParsedQuestion]:
    """Parse a pasted block. Returns None if neither a question nor options were found."""
    raw = (raw or "").replace("\r", "").strip()
    if not raw:
        return None

    lines = [line.strip() for line in raw.split("\n")]
    lines = [line for line in lines if line and not _ANSWER_LINE.match(line)]

    # consecutive non-option lines at the top form the question
    i = 0
    question_lines = []
    # "1. Which protocol..." followed by lettered options: the number belongs to the question
    if len(lines) > 1 and _is_numbered(lines[0]) and not _is_numbered(lines[1]):
        question_lines.append(OPTION_PREFIX.sub("", lines[0], count=1))
        i = 1
    while i < len(lines) and not OPTION_PREFIX.match(lines[i]):
        question_lines.append(lines[i])
        i += 1
    question = re.sub(r"\s+", " ", " ".join(question_lines)).strip()

    explicit = _explicit_answers(raw)
    options: list[str] = []
    correct: list[int] = []
    for line in lines[i:]:
        if not OPTION_PREFIX.match(line):
            continue
        label_match = _LABEL.match(line)
        label = label_match.group(1).upper() if label_match else None

        text = OPTION_PREFIX.sub("", line, count=1).strip()
        is_correct = bool(_CORRECT_MARKER.search(text))
        text = _CORRECT_MARKER.sub("", text, count=1).strip()

        if not is_correct and label and explicit:
            is_correct = label in explicit or _letter_to_number(label) in explicit

        if is_correct:
            correct.append(len(options))
        options.append(text)

    if not question and not options:
        return None
    if not options:
        return ParsedQuestion(question=question)

    if len(correct) > 1 or _CHOOSE_N.search(question):
        return ParsedQuestion(
            question=question,
            type="checkbox",
            options=options,
            answer=[options[idx] for idx in correct],
        )
    return ParsedQuestion(
        question=question,
        options=options,
        answer=options[correct[0]] if len(correct) == 1 else "",
    )

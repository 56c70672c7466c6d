"""Tolerant parser for the quiz text produced by the content service.

Block format (markers are case-insensitive, the bold asterisks are optional):

    **Question 1:** Question text. Additional unmarked lines until the
    next marker are treated as part of the question.
    A) First option
    B) Second option
    C) Third option (optional)
    D) Fourth option (optional)
    Correct Answer: B           (also "(B)" or "[B]")
    Explanation: Why B is right. Additional unmarked lines are appended.

Example:

    **Question 1:** What is 2+2?
    A) 3
    B) 4
    Correct Answer: B
    Explanation: Basic arithmetic.

Architecture note:
    Parsing is a small finite-state machine. Each line is matched against one
    dispatch table of (pattern, transition) pairs; the first pattern that
    matches decides the transition, and unmatched lines go to whichever text
    buffer the current state keeps open. A block that does not satisfy every
    structural rule yields no question at all. The content service is free
    text, so rejection is expected and never raised to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import re
from typing import Callable, Iterable

from tutor_app.core.models import QuizQuestion

logger = logging.getLogger(__name__)


class ParserState(Enum):
    QUESTION = "question"
    OPTIONS = "options"
    EXPLANATION = "explanation"


@dataclass(slots=True, frozen=True)
class ParseRejection:
    """Reason a block did not produce a question."""

    reason: str


_QUESTION_MARKER = re.compile(
    r"^\*{0,2}\s*question(?:\s+\d+)?\s*\*{0,2}\s*[:.]\s*\*{0,2}\s*(?P<text>.*)$",
    re.IGNORECASE,
)
_OPTION_MARKER = re.compile(r"^\*{0,2}\s*\(?(?P<key>[A-D])\)\s*\*{0,2}\s*(?P<text>.*)$", re.IGNORECASE)
_ANSWER_MARKER = re.compile(
    r"^\*{0,2}\s*correct\s+answer\s*\*{0,2}\s*:\s*\*{0,2}\s*[\[(]?(?P<key>[A-D])\b",
    re.IGNORECASE,
)
_EXPLANATION_MARKER = re.compile(
    r"^\*{0,2}\s*explanation\s*\*{0,2}\s*:\s*\*{0,2}\s*(?P<text>.*)$",
    re.IGNORECASE,
)
_BLOCK_SEPARATOR = "---"


@dataclass(slots=True)
class _ParseRun:
    """Mutable accumulator for a single block."""

    state: ParserState = ParserState.QUESTION
    question_parts: list[str] = field(default_factory=list)
    question_done: bool = False
    options: dict[str, str] = field(default_factory=dict)
    correct_key: str | None = None
    explanation_parts: list[str] = field(default_factory=list)
    finished: bool = False

    def on_question(self, match: re.Match[str]) -> None:
        if self.question_done:
            # A second question marker belongs to the next block.
            self.finished = True
            return
        self.question_parts = _non_empty([match.group("text")])
        self.state = ParserState.QUESTION

    def on_option(self, match: re.Match[str]) -> None:
        self._flush_question()
        key = match.group("key").upper()
        text = match.group("text").strip()
        if text and key not in self.options:
            self.options[key] = text
        self.state = ParserState.OPTIONS

    def on_answer(self, match: re.Match[str]) -> None:
        self._flush_question()
        self.correct_key = match.group("key").upper()
        self.state = ParserState.EXPLANATION

    def on_explanation(self, match: re.Match[str]) -> None:
        self._flush_question()
        self.explanation_parts = _non_empty([match.group("text")])
        self.state = ParserState.EXPLANATION

    def on_unmarked(self, line: str) -> None:
        if self.state is ParserState.QUESTION:
            self.question_parts.append(line)
        elif self.state is ParserState.EXPLANATION:
            self.explanation_parts.append(line)
        # Unmarked lines between options are dropped.

    def _flush_question(self) -> None:
        self.question_done = True

    def build(self) -> QuizQuestion | ParseRejection:
        question = " ".join(self.question_parts).strip()
        if not question:
            return ParseRejection("missing question text")
        if len(self.options) < 2:
            return ParseRejection(f"expected at least two options, found {len(self.options)}")
        if self.correct_key is None:
            return ParseRejection("missing correct answer")
        if self.correct_key not in self.options:
            return ParseRejection(f"correct answer {self.correct_key} is not among the options")
        explanation = " ".join(self.explanation_parts).strip() or None
        return QuizQuestion(
            question=question,
            options={key: self.options[key] for key in sorted(self.options)},
            correct_option_key=self.correct_key,
            explanation=explanation,
        )


_DISPATCH: tuple[tuple[re.Pattern[str], Callable[[_ParseRun, re.Match[str]], None]], ...] = (
    (_QUESTION_MARKER, _ParseRun.on_question),
    (_ANSWER_MARKER, _ParseRun.on_answer),
    (_EXPLANATION_MARKER, _ParseRun.on_explanation),
    (_OPTION_MARKER, _ParseRun.on_option),
)


def parse_quiz_block(raw_block: str) -> QuizQuestion | None:
    """Parse one question block. Returns None when the block is malformed."""
    result = _run(raw_block)
    return result if isinstance(result, QuizQuestion) else None


def parse_quiz_blocks(raw_blocks: Iterable[str]) -> list[QuizQuestion]:
    """Parse many blocks, omitting every block that is rejected."""
    questions: list[QuizQuestion] = []
    for index, block in enumerate(raw_blocks):
        result = _run(block)
        if isinstance(result, ParseRejection):
            logger.debug("Dropping quiz block %d: %s", index, result.reason)
            continue
        questions.append(result)
    return questions


def split_quiz_text(text: str) -> list[str]:
    """Cut a quiz document into blocks at question markers or '---' lines."""
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        starts_question = bool(_QUESTION_MARKER.match(stripped))
        if stripped == _BLOCK_SEPARATOR or (starts_question and _has_content(current_block)):
            if _has_content(current_block):
                blocks.append("\n".join(current_block).strip())
            current_block = []
            if stripped == _BLOCK_SEPARATOR:
                continue
        current_block.append(raw_line)
    if _has_content(current_block):
        blocks.append("\n".join(current_block).strip())
    return blocks


def _run(raw_block: str) -> QuizQuestion | ParseRejection:
    run = _ParseRun()
    for raw_line in raw_block.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        for pattern, transition in _DISPATCH:
            match = pattern.match(line)
            if match:
                transition(run, match)
                break
        else:
            run.on_unmarked(line)
        if run.finished:
            break
    return run.build()


def _non_empty(parts: list[str]) -> list[str]:
    return [part.strip() for part in parts if part.strip()]


def _has_content(lines: list[str]) -> bool:
    return any(line.strip() for line in lines)

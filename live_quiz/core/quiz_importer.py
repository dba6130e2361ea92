"""Utilities for loading quiz content from a human-friendly text file.

The file starts with a header block, followed by one block per question
(blocks are separated by blank lines or '---'):

    QUIZ: Capital cities
    HOST: host-123
    PUBLIC: yes

    Q: What is the capital of Norway?
    A: Bergen
    B: Oslo
    C: Trondheim
    CORRECT: B
    TIMELIMIT: 20

    Q: Name the capital of France.
    TYPE: text_input

``TYPE`` defaults to ``multiple_choice`` when options are given and to
``text_input`` otherwise. ``CORRECT`` accepts a comma separated list of
option letters. ``IMAGE`` sets an image URL.
"""

from __future__ import annotations

from pathlib import Path
import string

from live_quiz.core.models import Question, QuestionOption, QuestionType, Quiz


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


_OPTION_LETTERS = string.ascii_uppercase[:8]
_TRUE_VALUES = {"yes", "true", "1", "on"}


def load_quiz_from_file(file_path: Path) -> Quiz:
    return parse_quiz_text(file_path.read_text(encoding="utf-8"))


def parse_quiz_text(text: str) -> Quiz:
    blocks = _split_blocks(text)
    if not blocks:
        raise QuizImportError("Quiz file is empty.")
    title, host_id, is_public = _parse_header(blocks[0])
    questions = [_parse_block(block, order) for order, block in enumerate(blocks[1:])]
    if not questions:
        raise QuizImportError("Quiz file did not contain any questions.")
    return Quiz(id=0, title=title, host_id=host_id, is_public=is_public, questions=questions)


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---" or not stripped:
            if current_block:
                blocks.append("\n".join(current_block))
                current_block = []
            continue
        current_block.append(stripped)
    if current_block:
        blocks.append("\n".join(current_block))
    return blocks


def _parse_header(block: str) -> tuple[str, str, bool]:
    fields = {}
    for line in block.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            raise QuizImportError(f"Header line must look like 'KEY: value': '{line}'.")
        fields[key.strip().upper()] = value.strip()
    if not fields.get("QUIZ"):
        raise QuizImportError("Header must start with 'QUIZ: <title>'.")
    if not fields.get("HOST"):
        raise QuizImportError("Header must name the quiz owner with 'HOST: <user id>'.")
    is_public = fields.get("PUBLIC", "no").lower() in _TRUE_VALUES
    return fields["QUIZ"], fields["HOST"], is_public


def _parse_block(block: str, order: int) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    correct_letters: set[str] = set()
    question_type: QuestionType | None = None
    time_limit: int | None = None
    image_url: str | None = None
    current_section: str | None = None

    for line in block.splitlines():
        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("TYPE:"):
            raw_type = line.split(":", 1)[1].strip().lower()
            try:
                question_type = QuestionType(raw_type)
            except ValueError as exc:
                raise QuizImportError(f"Unknown question type '{raw_type}'.") from exc
            current_section = None
            continue

        if upper.startswith("CORRECT:"):
            raw_letters = line.split(":", 1)[1]
            correct_letters = {letter.strip().upper() for letter in raw_letters.split(",") if letter.strip()}
            current_section = None
            continue

        if upper.startswith("TIMELIMIT:"):
            raw_value = line.split(":", 1)[1].strip()
            try:
                time_limit = int(raw_value)
            except ValueError as exc:
                raise QuizImportError("TIMELIMIT must be an integer number of seconds.") from exc
            if time_limit <= 0:
                raise QuizImportError("TIMELIMIT must be a positive integer.")
            current_section = None
            continue

        if upper.startswith("IMAGE:"):
            image_url = line.split(":", 1)[1].strip() or None
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_LETTERS and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in options:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")

    letters = [letter for letter in _OPTION_LETTERS if letter in options]
    if letters != list(_OPTION_LETTERS[: len(letters)]):
        raise QuizImportError("Options must be lettered consecutively starting at A.")
    unknown = correct_letters - set(letters)
    if unknown:
        raise QuizImportError(f"CORRECT refers to unknown option(s): {', '.join(sorted(unknown))}.")

    if question_type is None:
        question_type = QuestionType.MULTIPLE_CHOICE if letters else QuestionType.TEXT_INPUT

    return Question(
        id=0,  # assigned by QuizCatalog.add_quiz
        quiz_id=0,
        type=question_type,
        text=question_text,
        order=order,
        image_url=image_url,
        time_limit=time_limit,
        options=[
            QuestionOption(
                id=0,
                question_id=0,
                text=options[letter].strip(),
                is_correct=letter in correct_letters,
                order=position,
            )
            for position, letter in enumerate(letters)
        ],
    )

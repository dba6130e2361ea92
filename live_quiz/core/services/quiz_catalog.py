"""Read-only quiz content consumed by live sessions."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock

from live_quiz.core.errors import NotFoundError, ValidationError
from live_quiz.core.models import Question, QuestionOption, Quiz


class QuizCatalog:
    """Stores published quizzes and serves their ordered questions and options.

    Content is validated once when it is registered; the session core relies
    on those guarantees (choice questions have at least two options and at
    least one correct option).
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._quizzes: dict[int, Quiz] = {}
        self._questions: dict[int, Question] = {}
        self._options: dict[int, QuestionOption] = {}
        self._quiz_counter: int = 0
        self._question_counter: int = 0
        self._option_counter: int = 0

    def add_quiz(self, quiz: Quiz) -> Quiz:
        """Validate ``quiz`` and store it with freshly assigned ids."""
        title = quiz.title.strip()
        if not title:
            raise ValidationError.for_field("title", "Title is required")
        if not quiz.host_id:
            raise ValidationError.for_field("host_id", "Quiz must have an owner")

        with self._lock:
            self._quiz_counter += 1
            quiz_id = self._quiz_counter
            ordered = sorted(quiz.questions, key=lambda q: q.order)
            questions = [
                self._prepare_question(quiz_id, position, question)
                for position, question in enumerate(ordered)
            ]
            stored = Quiz(
                id=quiz_id,
                title=title,
                host_id=quiz.host_id,
                is_public=quiz.is_public,
                questions=questions,
            )
            self._quizzes[quiz_id] = stored
            for question in questions:
                self._questions[question.id] = question
                for option in question.options:
                    self._options[option.id] = option
            return stored

    def get_quiz(self, quiz_id: int) -> Quiz:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz not found")
        return quiz

    def get_questions(self, quiz_id: int) -> list[Question]:
        return list(self.get_quiz(quiz_id).questions)

    def get_question(self, question_id: int) -> Question:
        with self._lock:
            question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        return question

    def get_option(self, option_id: int) -> QuestionOption | None:
        with self._lock:
            return self._options.get(option_id)

    def _prepare_question(self, quiz_id: int, position: int, question: Question) -> Question:
        text = question.text.strip()
        if not text:
            raise ValidationError.for_field(f"questions.{position}.text", "Question text is required")
        if question.time_limit is not None and question.time_limit <= 0:
            raise ValidationError.for_field(
                f"questions.{position}.time_limit", "Time limit must be a positive integer"
            )

        options = sorted(question.options, key=lambda o: o.order)
        if question.type.is_choice:
            if len(options) < 2:
                raise ValidationError.for_field(
                    f"questions.{position}.options",
                    "Multiple choice and true/false questions must have at least 2 options",
                )
            if not any(option.is_correct for option in options):
                raise ValidationError.for_field(
                    f"questions.{position}.options",
                    "At least one option must be marked as correct",
                )
        if any(not option.text.strip() for option in options):
            raise ValidationError.for_field(f"questions.{position}.options", "Option text is required")

        self._question_counter += 1
        question_id = self._question_counter
        prepared_options = []
        for order, option in enumerate(options):
            self._option_counter += 1
            prepared_options.append(
                QuestionOption(
                    id=self._option_counter,
                    question_id=question_id,
                    text=option.text.strip(),
                    is_correct=option.is_correct,
                    order=order,
                )
            )
        return replace(
            question,
            id=question_id,
            quiz_id=quiz_id,
            text=text,
            order=position,
            options=prepared_options,
        )

"""Shared fixtures for the live quiz test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random

from fastapi.testclient import TestClient
import pytest

from live_quiz.config import Settings
from live_quiz.core.models import Question, QuestionOption, QuestionType, Quiz
from live_quiz.core.services.auto_advance import AutoAdvancePolicy
from live_quiz.core.services.quiz_catalog import QuizCatalog
from live_quiz.core.session_orchestrator import SessionOrchestrator
from live_quiz.server.api_server import create_api_app

HOST_ID = "host-1"
OTHER_USER_ID = "someone-else"


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 18, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def choice_question(text: str, options: list[str], correct: set[str], time_limit: int | None = None) -> Question:
    return Question(
        id=0,
        quiz_id=0,
        type=QuestionType.MULTIPLE_CHOICE,
        text=text,
        order=0,
        time_limit=time_limit,
        options=[
            QuestionOption(id=0, question_id=0, text=label, is_correct=label in correct, order=i)
            for i, label in enumerate(options)
        ],
    )


def text_question(text: str) -> Question:
    return Question(id=0, quiz_id=0, type=QuestionType.TEXT_INPUT, text=text, order=0)


def build_quiz(questions: list[Question], host_id: str = HOST_ID, is_public: bool = False) -> Quiz:
    ordered = [
        Question(
            id=q.id,
            quiz_id=q.quiz_id,
            type=q.type,
            text=q.text,
            order=i,
            options=q.options,
            image_url=q.image_url,
            time_limit=q.time_limit,
        )
        for i, q in enumerate(questions)
    ]
    return Quiz(id=0, title="Sample quiz", host_id=host_id, is_public=is_public, questions=ordered)


def option_id(question: Question, label: str) -> int:
    return next(option.id for option in question.options if option.text == label)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> QuizCatalog:
    return QuizCatalog()


@pytest.fixture
def single_question_quiz(catalog: QuizCatalog) -> Quiz:
    return catalog.add_quiz(build_quiz([choice_question("Pick B", ["A", "B", "C"], {"B"})]))


@pytest.fixture
def three_question_quiz(catalog: QuizCatalog) -> Quiz:
    return catalog.add_quiz(
        build_quiz(
            [
                choice_question("Capital of Norway?", ["Bergen", "Oslo", "Trondheim"], {"Oslo"}, time_limit=20),
                choice_question("2 + 2 = 4", ["True", "False"], {"True"}),
                text_question("Name a primary colour"),
            ]
        )
    )


@pytest.fixture
def policy() -> AutoAdvancePolicy:
    return AutoAdvancePolicy(settle_seconds=1.0, min_display_seconds=3.0)


@pytest.fixture
def orchestrator(catalog: QuizCatalog, clock: FakeClock, policy: AutoAdvancePolicy) -> SessionOrchestrator:
    return SessionOrchestrator(catalog, clock=clock, policy=policy, rng=random.Random(7))


@pytest.fixture
def settings() -> Settings:
    return Settings(auto_advance_settle_seconds=1.0, min_question_display_seconds=3.0)


@pytest.fixture
def client(orchestrator: SessionOrchestrator, settings: Settings) -> TestClient:
    return TestClient(create_api_app(orchestrator, settings))

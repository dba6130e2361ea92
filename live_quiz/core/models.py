"""Domain models for live quiz sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuestionType(str, Enum):
    """Kinds of questions a quiz can contain."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    TEXT_INPUT = "text_input"
    IMAGE = "image"

    @property
    def is_choice(self) -> bool:
        return self in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)


class SessionStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class ResultsView(str, Enum):
    """Post-question display mode selected by the host."""

    NONE = "none"
    BAR_CHART = "bar_chart"
    RANKING = "ranking"


class SessionPhase(str, Enum):
    """Fine-grained phase derived from a session record."""

    WAITING = "waiting"
    BETWEEN_QUESTIONS = "between_questions"
    QUESTION_LIVE = "question_live"
    SHOWING_BAR_CHART = "showing_bar_chart"
    SHOWING_RANKING = "showing_ranking"
    FINISHED = "finished"


@dataclass(slots=True)
class QuestionOption:
    """Selectable answer for a choice-type question."""

    id: int
    question_id: int
    text: str
    is_correct: bool
    order: int


@dataclass(slots=True)
class Question:
    """Question owned by quiz content; read-only during a session."""

    id: int
    quiz_id: int
    type: QuestionType
    text: str
    order: int
    options: list[QuestionOption] = field(default_factory=list)
    image_url: str | None = None
    time_limit: int | None = None

    def find_option(self, option_id: int) -> QuestionOption | None:
        return next((option for option in self.options if option.id == option_id), None)


@dataclass(slots=True)
class Quiz:
    id: int
    title: str
    host_id: str
    is_public: bool = False
    questions: list[Question] = field(default_factory=list)


@dataclass(slots=True)
class QuizSession:
    """Durable record of one live run of a quiz."""

    id: int
    code: str
    quiz_id: int
    host_id: str
    created_at: datetime
    status: SessionStatus = SessionStatus.WAITING
    current_question_id: int | None = None
    results_view: ResultsView = ResultsView.NONE
    next_question_index: int = 0
    question_started_at: datetime | None = None
    all_answered_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def phase(self) -> SessionPhase:
        if self.status is SessionStatus.WAITING:
            return SessionPhase.WAITING
        if self.status is SessionStatus.FINISHED:
            return SessionPhase.FINISHED
        if self.current_question_id is None:
            return SessionPhase.BETWEEN_QUESTIONS
        if self.results_view is ResultsView.BAR_CHART:
            return SessionPhase.SHOWING_BAR_CHART
        if self.results_view is ResultsView.RANKING:
            return SessionPhase.SHOWING_RANKING
        return SessionPhase.QUESTION_LIVE


@dataclass(slots=True)
class Participant:
    """A joined player, authenticated or guest."""

    id: int
    session_id: int
    user_id: str
    joined_at: datetime
    user_name: str | None = None
    score: int = 0

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_id


@dataclass(slots=True)
class Answer:
    id: int
    session_id: int
    question_id: int
    user_id: str
    is_correct: bool
    answered_at: datetime
    option_id: int | None = None
    answer_text: str | None = None


@dataclass(slots=True)
class QuestionResult:
    """Frozen aggregation snapshot for one question within one session."""

    id: int
    session_id: int
    question_id: int
    answer_distribution: dict[int, int]
    total_answers: int
    correct_answers: int
    shown_at: datetime


@dataclass(slots=True)
class AnswerDistribution:
    """Live tally computed from the answer ledger."""

    total: int = 0
    correct: int = 0
    incorrect: int = 0
    by_option: dict[int, int] = field(default_factory=dict)


@dataclass(slots=True)
class AnswerWithParticipant:
    answer: Answer
    display_name: str

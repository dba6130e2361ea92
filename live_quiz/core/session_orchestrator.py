"""Session state machine shared by the host and participant API endpoints.

Phases of a session (see ``SessionPhase``)::

    waiting --start--> between_questions --start_question--> question_live
    question_live --finish / timer / auto-advance--> showing_bar_chart
    showing_bar_chart <--show_ranking / back_to_chart--> showing_ranking
    showing_ranking --next--> between_questions | finished
    any active phase --end--> finished

Host actions authorize the caller and validate the current phase before
mutating anything; a rejected action leaves the session untouched.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging
import random

from live_quiz.config import Settings
from live_quiz.constants.session_constants import JOIN_CODE_MAX_ATTEMPTS
from live_quiz.core.database import InMemoryDatabase
from live_quiz.core.errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    QuizSessionError,
    UnauthorizedError,
    ValidationError,
)
from live_quiz.core.models import (
    Answer,
    AnswerDistribution,
    AnswerWithParticipant,
    Participant,
    QuestionResult,
    Quiz,
    QuizSession,
    ResultsView,
    SessionPhase,
    SessionStatus,
)
from live_quiz.core.services.answer_ledger import AnswerLedger
from live_quiz.core.services.auto_advance import (
    AutoAdvanceAction,
    AutoAdvancePolicy,
    question_deadline,
    timer_has_expired,
)
from live_quiz.core.services.participant_registry import ParticipantRegistry
from live_quiz.core.services.quiz_catalog import QuizCatalog
from live_quiz.core.services.results_aggregator import ResultsAggregator
from live_quiz.core.services.scoreboard import RankingRow, Scoreboard
from live_quiz.core.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SessionState:
    """Everything a polling client needs to render the session."""

    session: QuizSession
    quiz: Quiz
    participants: list[Participant]
    revealed_question_ids: set[int]
    server_time: datetime
    question_deadline: datetime | None = None


@dataclass(slots=True)
class LiveStats:
    """Host live tally for the current question."""

    session: QuizSession
    participants: list[Participant]
    answer_stats: AnswerDistribution | None


class SessionOrchestrator:
    """Facade for the session services: Store, Registry, Ledger and Aggregator."""

    def __init__(
        self,
        catalog: QuizCatalog,
        database: InMemoryDatabase | None = None,
        clock: Callable[[], datetime] = utc_now,
        policy: AutoAdvancePolicy | None = None,
        code_max_attempts: int = JOIN_CODE_MAX_ATTEMPTS,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog = catalog
        self._db = database or InMemoryDatabase()
        self._clock = clock
        self._policy = policy or AutoAdvancePolicy()

        # Services
        self._store = SessionStore(self._db, catalog, clock, code_max_attempts=code_max_attempts, rng=rng)
        self._registry = ParticipantRegistry(self._db, clock)
        self._ledger = AnswerLedger(self._db, self._registry, clock)
        self._results = ResultsAggregator(self._db, self._ledger, clock)

    @classmethod
    def from_settings(cls, catalog: QuizCatalog, settings: Settings) -> "SessionOrchestrator":
        policy = AutoAdvancePolicy(
            settle_seconds=settings.auto_advance_settle_seconds,
            min_display_seconds=settings.min_question_display_seconds,
        )
        return cls(catalog, policy=policy, code_max_attempts=settings.code_max_attempts)

    @property
    def catalog(self) -> QuizCatalog:
        return self._catalog

    # --- Host actions ---

    def create_session(self, quiz_id: int, caller_id: str | None) -> QuizSession:
        if not caller_id:
            raise UnauthorizedError("Unauthorized")
        return self._store.create_session(quiz_id, caller_id)

    def start_session(self, code: str, caller_id: str | None) -> QuizSession:
        self._authorize_host(code, caller_id)
        session = self._store.start(code)
        logger.info("Session %s started", session.code)
        return session

    def start_question(self, code: str, caller_id: str | None, index: int | None = None) -> QuizSession:
        self._authorize_host(code, caller_id)
        with self._db.transaction():
            session = self._store.get_session_by_code(code)
            self._require_phase(session, SessionPhase.BETWEEN_QUESTIONS, "A question is already in progress")
            questions = self._catalog.get_questions(session.quiz_id)
            if not questions:
                raise ValidationError.for_field("index", "Quiz has no questions")
            position = session.next_question_index if index is None else index
            if not 0 <= position < len(questions):
                raise ValidationError.for_field("index", f"Question index {position} out of range")
            updated = self._store.set_current_question(code, questions[position].id, next_question_index=position)
        logger.info("Session %s: question %d live (index %d)", updated.code, updated.current_question_id, position)
        return updated

    def finish_question(
        self,
        code: str,
        caller_id: str | None,
        question_id: int | None = None,
    ) -> QuizSession:
        """Freeze results for the live question and show the bar chart.

        Finishing an already-finished question, or a question that is no
        longer current, is a no-op so that host clicks, timers and
        auto-advance can race safely.
        """
        self._authorize_host(code, caller_id)
        return self._finish(code, question_id)

    def expire_question_timer(self, code: str, question_id: int) -> QuizSession:
        """Finish ``question_id`` if its countdown has run out on the server clock."""
        session = self._store.get_session_by_code(code)
        if session.phase is not SessionPhase.QUESTION_LIVE or session.current_question_id != question_id:
            return session
        question = self._catalog.get_question(question_id)
        if not timer_has_expired(session, question, self._clock()):
            logger.debug("Session %s: timer expiry for question %d ignored, time remains", code, question_id)
            return session
        logger.info("Session %s: time limit reached for question %d", session.code, question_id)
        return self._finish(code, question_id)

    def evaluate_auto_advance(self, code: str) -> QuizSession:
        """Finish the live question once every current participant has answered."""
        session = self._store.get_session_by_code(code)
        if session.phase is not SessionPhase.QUESTION_LIVE:
            return session

        question_id = session.current_question_id
        participant_ids = {p.user_id for p in self._registry.list_participants(session.id)}
        answered_ids = self._ledger.answered_user_ids(session.id, question_id)
        now = self._clock()
        action = self._policy.evaluate(session, participant_ids, answered_ids, now)

        if action is AutoAdvanceAction.ARM:
            return self._store.mark_all_answered(session.id, question_id, now) or session
        if action is AutoAdvanceAction.DISARM:
            return self._store.mark_all_answered(session.id, question_id, None) or session
        if action is AutoAdvanceAction.FINISH:
            try:
                finished = self._finish(code, question_id)
            except QuizSessionError as exc:
                # Nothing was written, so the next poll evaluates again.
                logger.warning("Session %s: auto-advance failed: %s", code, exc.message)
                return self._store.get_session_by_code(code)
            logger.info("Session %s: everyone answered question %d, auto-advanced", code, question_id)
            return finished
        return session

    def show_ranking(self, code: str, caller_id: str | None) -> QuizSession:
        self._authorize_host(code, caller_id)
        return self._store.set_results_view(code, ResultsView.RANKING, expected=ResultsView.BAR_CHART)

    def back_to_chart(self, code: str, caller_id: str | None) -> QuizSession:
        self._authorize_host(code, caller_id)
        return self._store.set_results_view(code, ResultsView.BAR_CHART, expected=ResultsView.RANKING)

    def next_question(self, code: str, caller_id: str | None) -> QuizSession:
        """Leave the ranking: go between questions, or finish after the last one."""
        self._authorize_host(code, caller_id)
        with self._db.transaction():
            session = self._store.get_session_by_code(code)
            self._require_phase(session, SessionPhase.SHOWING_RANKING, "Show the ranking before moving on")
            questions = self._catalog.get_questions(session.quiz_id)
            current_index = next(
                (i for i, q in enumerate(questions) if q.id == session.current_question_id), -1
            )
            next_index = current_index + 1
            if next_index < len(questions):
                return self._store.set_current_question(code, None, next_question_index=next_index)
            updated = self._store.end(code)
        logger.info("Session %s: last question done, session finished", updated.code)
        return updated

    def end_session(self, code: str, caller_id: str | None) -> QuizSession:
        self._authorize_host(code, caller_id)
        session = self._store.end(code)
        logger.info("Session %s ended by host", session.code)
        return session

    def kick_participant(self, code: str, caller_id: str | None, user_id: str) -> Participant:
        session = self._authorize_host(code, caller_id)
        removed = self._registry.kick(session.id, user_id)
        logger.info("Session %s: kicked %s", session.code, user_id)
        return removed

    def delete_session(self, code: str, caller_id: str | None) -> None:
        self._authorize_host(code, caller_id)
        self._store.delete_session(code)

    def compute_results(self, code: str, caller_id: str | None) -> QuestionResult:
        """Recompute the snapshot for the current question without changing the view."""
        session = self._authorize_host(code, caller_id)
        if session.current_question_id is None:
            raise ConflictError("No active question")
        return self._results.compute_and_store(session.id, session.current_question_id)

    def reconcile_scores(self, code: str, caller_id: str | None) -> list[Participant]:
        session = self._authorize_host(code, caller_id)
        return self._ledger.reconcile_scores(session.id)

    # --- Participant actions ---

    def join_session(
        self,
        code: str,
        user_id: str,
        display_name: str | None = None,
    ) -> tuple[Participant, bool]:
        session = self._store.get_session_by_code(code)
        return self._registry.join(session, user_id, display_name)

    def submit_answer(
        self,
        session_id: int,
        question_id: int,
        user_id: str,
        option_id: int | None = None,
        answer_text: str | None = None,
    ) -> Answer:
        if option_id is None and not (answer_text and answer_text.strip()):
            raise ValidationError(
                "Either answer_text or option_id must be provided",
                details=[{"loc": ["option_id", "answer_text"], "msg": "One of these fields is required"}],
            )
        session = self._store.get_session(session_id)
        if session.status is SessionStatus.FINISHED:
            raise GoneError("Session has ended")
        question = self._catalog.get_question(question_id)
        if question.quiz_id != session.quiz_id:
            raise NotFoundError("Question not found")
        if option_id is not None:
            option = self._catalog.get_option(option_id)
            if option is None or option.question_id != question.id:
                raise ValidationError.for_field("option_id", "Option does not belong to this question")

        with self._db.transaction():
            if self._ledger.get_answer(session_id, question_id, user_id) is not None:
                raise ConflictError("Already answered")
            current = self._store.get_session(session_id)
            if current.phase is not SessionPhase.QUESTION_LIVE or current.current_question_id != question_id:
                raise ConflictError("Question is not accepting answers")
            if self._registry.get(session_id, user_id) is None:
                raise ForbiddenError("You are not a participant in this session")
            text = answer_text.strip() if answer_text else None
            return self._ledger.submit(session_id, question, user_id, option_id=option_id, answer_text=text)

    # --- Queries ---

    def get_session(self, code: str) -> QuizSession:
        return self._store.get_session_by_code(code)

    def get_session_by_id(self, session_id: int) -> QuizSession:
        return self._store.get_session(session_id)

    def get_session_state(self, code: str) -> SessionState:
        session = self.evaluate_auto_advance(code)
        quiz = self._catalog.get_quiz(session.quiz_id)
        deadline = None
        if session.phase is SessionPhase.QUESTION_LIVE:
            deadline = question_deadline(session, self._catalog.get_question(session.current_question_id))
        return SessionState(
            session=session,
            quiz=quiz,
            participants=self._visible_participants(session),
            revealed_question_ids=self._revealed_question_ids(session),
            server_time=self._clock(),
            question_deadline=deadline,
        )

    def live_stats(self, code: str, caller_id: str | None = None) -> LiveStats:
        session = self.evaluate_auto_advance(code)
        if caller_id is not None and caller_id == session.host_id:
            participants = self._registry.list_participants(session.id)
        else:
            participants = self._visible_participants(session)
        stats = None
        if session.current_question_id is not None:
            stats = self._ledger.distribution(session.id, session.current_question_id)
        return LiveStats(session=session, participants=participants, answer_stats=stats)

    def ranking(self, code: str) -> list[RankingRow]:
        session = self._store.get_session_by_code(code)
        answers = self._db.answers.select(lambda a: a.session_id == session.id)
        if session.phase is SessionPhase.QUESTION_LIVE:
            answers = [a for a in answers if a.question_id != session.current_question_id]
        return Scoreboard.rank(self._visible_participants(session), answers)

    def question_result(self, code: str, question_id: int) -> QuestionResult:
        session = self._store.get_session_by_code(code)
        if question_id not in self._revealed_question_ids(session):
            raise NotFoundError("No results for this question")
        result = self._results.get_result(session.id, question_id)
        if result is None:
            raise NotFoundError("No results for this question")
        return result

    def answers_for_question(
        self,
        code: str,
        question_id: int,
        caller_id: str | None = None,
    ) -> list[AnswerWithParticipant]:
        session = self._store.get_session_by_code(code)
        is_host = caller_id is not None and caller_id == session.host_id
        if not is_host and question_id not in self._revealed_question_ids(session):
            raise ForbiddenError("Answers are hidden until results are shown")
        return self._ledger.answers_with_participant(session.id, question_id)

    def answers_for_user(
        self,
        session_id: int,
        user_id: str,
        caller_id: str | None = None,
    ) -> list[Answer]:
        """Answers recorded for ``user_id``.

        While a question is live its answers are only returned to the player
        who gave them and to the host.
        """
        session = self._store.get_session(session_id)
        answers = self._ledger.answers_for_user(session.id, user_id)
        can_see_live = caller_id is not None and caller_id in (user_id, session.host_id)
        if session.phase is SessionPhase.QUESTION_LIVE and not can_see_live:
            answers = [a for a in answers if a.question_id != session.current_question_id]
        return answers

    # --- Internals ---

    def _authorize_host(self, code: str, caller_id: str | None) -> QuizSession:
        if not caller_id:
            raise UnauthorizedError("Unauthorized")
        session = self._store.get_session_by_code(code)
        if session.host_id != caller_id:
            logger.warning("Rejected host action on session %s from %s", session.code, caller_id)
            raise ForbiddenError("Only the host can control this session")
        return session

    @staticmethod
    def _require_phase(session: QuizSession, expected: SessionPhase, message: str) -> None:
        if session.phase is expected:
            return
        if session.phase is SessionPhase.FINISHED:
            raise GoneError("Session has ended")
        if session.phase is SessionPhase.WAITING:
            raise ConflictError("Session has not started")
        raise ConflictError(message)

    def _finish(self, code: str, question_id: int | None) -> QuizSession:
        with self._db.transaction():
            session = self._store.get_session_by_code(code)
            if session.status is SessionStatus.FINISHED:
                raise GoneError("Session has ended")
            if session.status is SessionStatus.WAITING:
                raise ConflictError("Session has not started")
            if question_id is not None and question_id != session.current_question_id:
                return session
            if session.current_question_id is None:
                raise ConflictError("No active question")
            if session.results_view is not ResultsView.NONE:
                return session
            self._results.compute_and_store(session.id, session.current_question_id)
            return self._store.set_results_view(code, ResultsView.BAR_CHART, expected=ResultsView.NONE)

    def _revealed_question_ids(self, session: QuizSession) -> set[int]:
        revealed = {result.question_id for result in self._results.results_for_session(session.id)}
        if session.phase is SessionPhase.QUESTION_LIVE:
            revealed.discard(session.current_question_id)
        return revealed

    def _visible_participants(self, session: QuizSession) -> list[Participant]:
        """Participants with points from the live question held back until it is revealed."""
        participants = self._registry.list_participants(session.id)
        if session.phase is not SessionPhase.QUESTION_LIVE:
            return participants
        pending = {
            answer.user_id
            for answer in self._ledger.answers_for_question(session.id, session.current_question_id)
            if answer.is_correct
        }
        adjusted = [
            replace(p, score=max(0, p.score - 1)) if p.user_id in pending else p for p in participants
        ]
        return sorted(adjusted, key=lambda p: (-p.score, p.joined_at, p.id))

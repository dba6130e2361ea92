"""Service owning the session record and its permitted transitions."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import random

from live_quiz.constants.session_constants import JOIN_CODE_MAX_ATTEMPTS
from live_quiz.core.code_generator import generate_unique_code
from live_quiz.core.database import InMemoryDatabase
from live_quiz.core.errors import ConflictError, ForbiddenError, GoneError, NotFoundError, ValidationError
from live_quiz.core.models import QuizSession, ResultsView, SessionStatus
from live_quiz.core.services.quiz_catalog import QuizCatalog

logger = logging.getLogger(__name__)


class SessionStore:
    """Reads and mutates session rows.

    Every mutation re-reads the row inside a database transaction and checks
    the expected state before writing (compare-and-set), so two concurrent
    callers can never both apply the same transition.
    """

    def __init__(
        self,
        database: InMemoryDatabase,
        catalog: QuizCatalog,
        clock: Callable[[], datetime],
        code_max_attempts: int = JOIN_CODE_MAX_ATTEMPTS,
        rng: random.Random | None = None,
    ) -> None:
        self._db = database
        self._catalog = catalog
        self._clock = clock
        self._code_max_attempts = code_max_attempts
        self._rng = rng

    def create_session(self, quiz_id: int, host_id: str) -> QuizSession:
        quiz = self._catalog.get_quiz(quiz_id)
        if quiz.host_id != host_id and not quiz.is_public:
            raise ForbiddenError("You cannot host this quiz")

        with self._db.transaction():
            code = generate_unique_code(
                lambda candidate: self._db.sessions.find_unique("code", candidate) is not None,
                max_attempts=self._code_max_attempts,
                rng=self._rng,
            )
            session = QuizSession(
                id=self._db.next_id("sessions"),
                code=code,
                quiz_id=quiz.id,
                host_id=host_id,
                created_at=self._clock(),
            )
            self._db.sessions.insert(session)
        logger.info("Created session %s for quiz %d (host %s)", code, quiz.id, host_id)
        return session

    def get_session_by_code(self, code: str) -> QuizSession:
        session = self._db.sessions.find_unique("code", code.upper())
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def get_session(self, session_id: int) -> QuizSession:
        session = self._db.sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def start(self, code: str) -> QuizSession:
        with self._db.transaction():
            session = self.get_session_by_code(code)
            _require_not_finished(session)
            if session.status is not SessionStatus.WAITING:
                raise ConflictError("Session has already started")
            return self._db.sessions.update(
                session.id, status=SessionStatus.ACTIVE, started_at=self._clock()
            )

    def end(self, code: str) -> QuizSession:
        with self._db.transaction():
            session = self.get_session_by_code(code)
            _require_not_finished(session)
            if session.status is not SessionStatus.ACTIVE:
                raise ConflictError("Session has not started")
            return self._db.sessions.update(
                session.id,
                status=SessionStatus.FINISHED,
                ended_at=self._clock(),
                current_question_id=None,
                results_view=ResultsView.NONE,
                question_started_at=None,
                all_answered_at=None,
            )

    def set_current_question(
        self,
        code: str,
        question_id: int | None,
        next_question_index: int | None = None,
    ) -> QuizSession:
        """Point the session at ``question_id``; always clears the results view."""
        with self._db.transaction():
            session = self.get_session_by_code(code)
            _require_active(session)
            changes: dict[str, object] = {
                "current_question_id": question_id,
                "results_view": ResultsView.NONE,
                "question_started_at": self._clock() if question_id is not None else None,
                "all_answered_at": None,
            }
            if next_question_index is not None:
                changes["next_question_index"] = next_question_index
            return self._db.sessions.update(session.id, **changes)

    def set_results_view(
        self,
        code: str,
        view: ResultsView | str,
        expected: ResultsView | None = None,
    ) -> QuizSession:
        try:
            view = ResultsView(view)
        except ValueError as exc:
            raise ValidationError.for_field("results_view", f"Invalid results view: {view!r}") from exc

        with self._db.transaction():
            session = self.get_session_by_code(code)
            _require_active(session)
            if view is not ResultsView.NONE and session.current_question_id is None:
                raise ConflictError("No active question")
            if expected is not None and session.results_view is not expected:
                raise ConflictError(
                    f"Results view is '{session.results_view.value}', expected '{expected.value}'"
                )
            return self._db.sessions.update(session.id, results_view=view)

    def mark_all_answered(self, session_id: int, question_id: int, at: datetime | None) -> QuizSession | None:
        """Set or clear the auto-advance marker if ``question_id`` is still current."""
        with self._db.transaction():
            session = self._db.sessions.get(session_id)
            if session is None or session.current_question_id != question_id:
                return None
            return self._db.sessions.update(session_id, all_answered_at=at)

    def delete_session(self, code: str) -> None:
        session = self.get_session_by_code(code)
        self._db.delete_session_cascade(session.id)
        logger.info("Deleted session %s", session.code)


def _require_not_finished(session: QuizSession) -> None:
    if session.status is SessionStatus.FINISHED:
        raise GoneError("Session has ended")


def _require_active(session: QuizSession) -> None:
    _require_not_finished(session)
    if session.status is not SessionStatus.ACTIVE:
        raise ConflictError("Session has not started")

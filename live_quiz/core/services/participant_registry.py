"""Service tracking who has joined a session and their scores."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging

from live_quiz.core.database import InMemoryDatabase
from live_quiz.core.errors import GoneError, NotFoundError
from live_quiz.core.models import Participant, QuizSession, SessionStatus

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """Manages participant rows keyed by (session, user)."""

    def __init__(self, database: InMemoryDatabase, clock: Callable[[], datetime]) -> None:
        self._db = database
        self._clock = clock

    def join(
        self,
        session: QuizSession,
        user_id: str,
        display_name: str | None = None,
    ) -> tuple[Participant, bool]:
        """Register ``user_id`` in ``session``.

        Rejoining returns the existing row untouched (name and score are
        kept). The boolean is True when a new row was created.
        """
        with self._db.transaction():
            current = self._db.sessions.get(session.id)
            if current is None:
                raise NotFoundError("Session not found")
            if current.status is SessionStatus.FINISHED:
                raise GoneError("Session has ended")

            existing = self._db.participants.get((session.id, user_id))
            if existing is not None:
                return existing, False

            participant = Participant(
                id=self._db.next_id("participants"),
                session_id=session.id,
                user_id=user_id,
                user_name=(display_name or "").strip() or None,
                joined_at=self._clock(),
            )
            self._db.participants.insert(participant)
        logger.info("Participant %s joined session %s", user_id, session.code)
        return participant, True

    def get(self, session_id: int, user_id: str) -> Participant | None:
        return self._db.participants.get((session_id, user_id))

    def kick(self, session_id: int, user_id: str) -> Participant:
        """Hard-delete the participant row. Their answers stay in the ledger.

        A finished session is frozen, so kicking from it raises GoneError.
        """
        with self._db.transaction():
            session = self._db.sessions.get(session_id)
            if session is not None and session.status is SessionStatus.FINISHED:
                raise GoneError("Session has ended")
            removed = self._db.participants.delete((session_id, user_id))
        if removed is None:
            raise NotFoundError("Participant not found")
        return removed

    def increment_score(self, session_id: int, user_id: str, delta: int = 1) -> Participant | None:
        """Atomically add ``delta`` to the score, never going below zero.

        Returns None when the participant no longer exists.
        """
        with self._db.transaction():
            participant = self._db.participants.get((session_id, user_id))
            if participant is None:
                return None
            return self._db.participants.update(
                (session_id, user_id), score=max(0, participant.score + delta)
            )

    def set_score(self, session_id: int, user_id: str, score: int) -> Participant:
        with self._db.transaction():
            return self._db.participants.update((session_id, user_id), score=max(0, score))

    def list_participants(self, session_id: int) -> list[Participant]:
        """Participants ordered by score (highest first), then join time."""
        rows = self._db.participants.select(lambda p: p.session_id == session_id)
        return sorted(rows, key=lambda p: (-p.score, p.joined_at, p.id))

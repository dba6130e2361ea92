"""Append-only record of one answer per participant per question."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging

from live_quiz.core.database import InMemoryDatabase, UniqueViolation
from live_quiz.core.errors import ConflictError
from live_quiz.core.models import (
    Answer,
    AnswerDistribution,
    AnswerWithParticipant,
    Participant,
    Question,
)
from live_quiz.core.services.participant_registry import ParticipantRegistry

logger = logging.getLogger(__name__)


class AnswerLedger:
    """Stores answers, scores correct ones, and tallies distributions."""

    def __init__(
        self,
        database: InMemoryDatabase,
        registry: ParticipantRegistry,
        clock: Callable[[], datetime],
    ) -> None:
        self._db = database
        self._registry = registry
        self._clock = clock

    def submit(
        self,
        session_id: int,
        question: Question,
        user_id: str,
        option_id: int | None = None,
        answer_text: str | None = None,
    ) -> Answer:
        """Record an answer and award a point when it is correct.

        The insert and the score increment form one transaction: if scoring
        fails the answer is rolled back too. A duplicate submission is
        rejected by the table's unique key, so two racing requests cannot
        both be recorded.
        """
        option = question.find_option(option_id) if option_id is not None else None
        is_correct = option.is_correct if option is not None else False

        with self._db.transaction():
            answer = Answer(
                id=self._db.next_id("answers"),
                session_id=session_id,
                question_id=question.id,
                user_id=user_id,
                option_id=option_id,
                answer_text=answer_text,
                is_correct=is_correct,
                answered_at=self._clock(),
            )
            try:
                self._db.answers.insert(answer)
            except UniqueViolation as exc:
                raise ConflictError("Already answered") from exc
            if is_correct:
                self._registry.increment_score(session_id, user_id, 1)

        logger.debug(
            "Answer from %s on question %d in session %d (correct=%s)",
            user_id,
            question.id,
            session_id,
            is_correct,
        )
        return answer

    def get_answer(self, session_id: int, question_id: int, user_id: str) -> Answer | None:
        return self._db.answers.get((session_id, question_id, user_id))

    def answers_for_question(self, session_id: int, question_id: int) -> list[Answer]:
        rows = self._db.answers.select(
            lambda a: a.session_id == session_id and a.question_id == question_id
        )
        return sorted(rows, key=lambda a: (a.answered_at, a.id))

    def answers_for_user(self, session_id: int, user_id: str) -> list[Answer]:
        rows = self._db.answers.select(lambda a: a.session_id == session_id and a.user_id == user_id)
        return sorted(rows, key=lambda a: (a.answered_at, a.id))

    def answered_user_ids(self, session_id: int, question_id: int) -> set[str]:
        return {answer.user_id for answer in self.answers_for_question(session_id, question_id)}

    def distribution(self, session_id: int, question_id: int) -> AnswerDistribution:
        tally = AnswerDistribution()
        for answer in self.answers_for_question(session_id, question_id):
            tally.total += 1
            if answer.is_correct:
                tally.correct += 1
            else:
                tally.incorrect += 1
            if answer.option_id is not None:
                tally.by_option[answer.option_id] = tally.by_option.get(answer.option_id, 0) + 1
        return tally

    def answers_with_participant(self, session_id: int, question_id: int) -> list[AnswerWithParticipant]:
        """Answers joined to display names; kicked players fall back to their user id."""
        rows = []
        for answer in self.answers_for_question(session_id, question_id):
            participant = self._registry.get(session_id, answer.user_id)
            name = participant.display_name if participant is not None else answer.user_id
            rows.append(AnswerWithParticipant(answer=answer, display_name=name))
        return rows

    def reconcile_scores(self, session_id: int) -> list[Participant]:
        """Rewrite every participant's score from their correct answers."""
        with self._db.transaction():
            correct_by_user: dict[str, int] = {}
            for answer in self._db.answers.select(lambda a: a.session_id == session_id):
                if answer.is_correct:
                    correct_by_user[answer.user_id] = correct_by_user.get(answer.user_id, 0) + 1
            repaired = []
            for participant in self._registry.list_participants(session_id):
                expected = correct_by_user.get(participant.user_id, 0)
                if participant.score != expected:
                    logger.warning(
                        "Repairing score for %s in session %d: %d -> %d",
                        participant.user_id,
                        session_id,
                        participant.score,
                        expected,
                    )
                    participant = self._registry.set_score(session_id, participant.user_id, expected)
                repaired.append(participant)
            return sorted(repaired, key=lambda p: (-p.score, p.joined_at, p.id))

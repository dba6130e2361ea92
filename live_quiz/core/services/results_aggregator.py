"""Service for freezing per-question result snapshots."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging

from live_quiz.core.database import InMemoryDatabase
from live_quiz.core.models import QuestionResult
from live_quiz.core.services.answer_ledger import AnswerLedger

logger = logging.getLogger(__name__)


class ResultsAggregator:
    """Computes distributions from the ledger and upserts QuestionResult rows."""

    def __init__(
        self,
        database: InMemoryDatabase,
        ledger: AnswerLedger,
        clock: Callable[[], datetime],
    ) -> None:
        self._db = database
        self._ledger = ledger
        self._clock = clock

    def compute_and_store(self, session_id: int, question_id: int) -> QuestionResult:
        """Recompute the snapshot for (session, question) and overwrite any previous one.

        Safe to call repeatedly; there is never more than one row per pair. If
        anything fails inside the transaction the previous snapshot is kept.
        """
        with self._db.transaction():
            tally = self._ledger.distribution(session_id, question_id)
            candidate = QuestionResult(
                id=self._db.next_id("question_results"),
                session_id=session_id,
                question_id=question_id,
                answer_distribution=dict(tally.by_option),
                total_answers=tally.total,
                correct_answers=tally.correct,
                shown_at=self._clock(),
            )
            stored = self._db.question_results.upsert(candidate, merge=_keep_row_id)
        logger.info(
            "Stored results for question %d in session %d: %d answers, %d correct",
            question_id,
            session_id,
            stored.total_answers,
            stored.correct_answers,
        )
        return stored

    def get_result(self, session_id: int, question_id: int) -> QuestionResult | None:
        return self._db.question_results.get((session_id, question_id))

    def results_for_session(self, session_id: int) -> list[QuestionResult]:
        rows = self._db.question_results.select(lambda r: r.session_id == session_id)
        return sorted(rows, key=lambda r: (r.shown_at, r.id))


def _keep_row_id(existing: QuestionResult, new: QuestionResult) -> QuestionResult:
    return QuestionResult(
        id=existing.id,
        session_id=new.session_id,
        question_id=new.question_id,
        answer_distribution=new.answer_distribution,
        total_answers=new.total_answers,
        correct_answers=new.correct_answers,
        shown_at=new.shown_at,
    )

"""Timing policy for finishing a question without an explicit host action."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from live_quiz.constants.session_constants import (
    AUTO_ADVANCE_SETTLE_SECONDS,
    MIN_QUESTION_DISPLAY_SECONDS,
)
from live_quiz.core.models import Question, QuizSession, SessionPhase


class AutoAdvanceAction(Enum):
    WAIT = "wait"
    ARM = "arm"
    DISARM = "disarm"
    FINISH = "finish"


@dataclass(slots=True)
class AutoAdvancePolicy:
    """Decides when "everyone has answered" should finish the live question.

    The first evaluation that sees every current participant answered arms
    the session (the caller stores the time on the session row). The question
    is finished once the settle delay has passed since arming and the
    question has been on screen for the minimum display time. Losing the
    full house again, e.g. a late joiner, disarms it.
    """

    settle_seconds: float = AUTO_ADVANCE_SETTLE_SECONDS
    min_display_seconds: float = MIN_QUESTION_DISPLAY_SECONDS

    def evaluate(
        self,
        session: QuizSession,
        participant_ids: set[str],
        answered_ids: set[str],
        now: datetime,
    ) -> AutoAdvanceAction:
        if session.phase is not SessionPhase.QUESTION_LIVE:
            return AutoAdvanceAction.WAIT

        everyone_answered = bool(participant_ids) and participant_ids <= answered_ids
        if not everyone_answered:
            if session.all_answered_at is not None:
                return AutoAdvanceAction.DISARM
            return AutoAdvanceAction.WAIT

        armed_at = session.all_answered_at or now
        settled = now - armed_at >= timedelta(seconds=self.settle_seconds)
        if settled and self._displayed_long_enough(session, now):
            return AutoAdvanceAction.FINISH
        if session.all_answered_at is None:
            return AutoAdvanceAction.ARM
        return AutoAdvanceAction.WAIT

    def _displayed_long_enough(self, session: QuizSession, now: datetime) -> bool:
        if session.question_started_at is None:
            return True
        return now - session.question_started_at >= timedelta(seconds=self.min_display_seconds)


def question_deadline(session: QuizSession, question: Question) -> datetime | None:
    """When the countdown for ``question`` runs out, or None if it has no limit."""
    if question.time_limit is None or session.question_started_at is None:
        return None
    return session.question_started_at + timedelta(seconds=question.time_limit)


def timer_has_expired(session: QuizSession, question: Question, now: datetime) -> bool:
    deadline = question_deadline(session, question)
    return deadline is not None and now >= deadline

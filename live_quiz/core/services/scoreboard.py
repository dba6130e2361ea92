"""Ranking rows built from participants and their recorded answers."""

from __future__ import annotations

from dataclasses import dataclass

from live_quiz.core.models import Answer, Participant


@dataclass(slots=True)
class RankingRow:
    """Immutable snapshot returned to consumers."""

    position: int
    user_id: str
    display_name: str
    score: int
    correct_answers: int
    total_answers: int


class Scoreboard:
    """Orders participants by score; players without answers are still ranked."""

    @staticmethod
    def rank(participants: list[Participant], answers: list[Answer]) -> list[RankingRow]:
        totals: dict[str, tuple[int, int]] = {}
        for answer in answers:
            correct, total = totals.get(answer.user_id, (0, 0))
            totals[answer.user_id] = (correct + int(answer.is_correct), total + 1)

        ordered = sorted(participants, key=lambda p: (-p.score, p.joined_at, p.id))
        rows: list[RankingRow] = []
        for index, participant in enumerate(ordered):
            # Equal scores share a position (1, 1, 3).
            if rows and rows[-1].score == participant.score:
                position = rows[-1].position
            else:
                position = index + 1
            correct, total = totals.get(participant.user_id, (0, 0))
            rows.append(
                RankingRow(
                    position=position,
                    user_id=participant.user_id,
                    display_name=participant.display_name,
                    score=participant.score,
                    correct_answers=correct,
                    total_answers=total,
                )
            )
        return rows

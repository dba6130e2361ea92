from live_quiz.core.database import InMemoryDatabase
from live_quiz.core.services.answer_ledger import AnswerLedger
from live_quiz.core.services.participant_registry import ParticipantRegistry
from live_quiz.core.services.results_aggregator import ResultsAggregator
from live_quiz.core.services.scoreboard import Scoreboard
from live_quiz.core.services.session_store import SessionStore

from conftest import HOST_ID, option_id


def test_recomputing_overwrites_the_single_snapshot(catalog, clock, single_question_quiz):
    db = InMemoryDatabase()
    registry = ParticipantRegistry(db, clock)
    ledger = AnswerLedger(db, registry, clock)
    aggregator = ResultsAggregator(db, ledger, clock)
    session = SessionStore(db, catalog, clock).create_session(single_question_quiz.id, HOST_ID)
    question = single_question_quiz.questions[0]
    registry.join(session, "p1", "One")
    registry.join(session, "p2", "Two")

    ledger.submit(session.id, question, "p1", option_id=option_id(question, "B"))
    first = aggregator.compute_and_store(session.id, question.id)
    clock.advance(5)
    ledger.submit(session.id, question, "p2", option_id=option_id(question, "C"))
    second = aggregator.compute_and_store(session.id, question.id)

    assert second.id == first.id
    assert second.total_answers == 2
    assert second.correct_answers == 1
    assert second.shown_at == clock.now
    assert aggregator.results_for_session(session.id) == [second]


def test_ranking_shares_positions_on_ties(catalog, clock, single_question_quiz):
    db = InMemoryDatabase()
    registry = ParticipantRegistry(db, clock)
    session = SessionStore(db, catalog, clock).create_session(single_question_quiz.id, HOST_ID)
    for user_id in ("a", "b", "c"):
        registry.join(session, user_id, user_id)
        clock.advance(1)
    registry.set_score(session.id, "a", 2)
    registry.set_score(session.id, "b", 2)

    rows = Scoreboard.rank(registry.list_participants(session.id), [])
    assert [(row.user_id, row.position) for row in rows] == [("a", 1), ("b", 1), ("c", 3)]

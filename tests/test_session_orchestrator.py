from datetime import timedelta
import re

import pytest

from live_quiz.core.errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from live_quiz.core.models import ResultsView, SessionPhase, SessionStatus

from conftest import HOST_ID, OTHER_USER_ID, build_quiz, option_id


@pytest.fixture
def session(orchestrator, three_question_quiz):
    return orchestrator.create_session(three_question_quiz.id, HOST_ID)


@pytest.fixture
def live(orchestrator, session):
    """Session with three players and the first question live."""
    orchestrator.start_session(session.code, HOST_ID)
    for user_id in ("p1", "p2", "p3"):
        orchestrator.join_session(session.code, user_id, user_id.upper())
    return orchestrator.start_question(session.code, HOST_ID)


def first_question(quiz):
    return quiz.questions[0]


# --- Lifecycle ---


def test_new_session_is_waiting_with_join_code(session):
    assert session.status is SessionStatus.WAITING
    assert session.phase is SessionPhase.WAITING
    assert re.fullmatch(r"[A-Z0-9]{6}", session.code)


def test_only_start_is_legal_while_waiting(orchestrator, session):
    for action in (orchestrator.start_question, orchestrator.show_ranking, orchestrator.next_question):
        with pytest.raises(ConflictError):
            action(session.code, HOST_ID)
    with pytest.raises(ConflictError):
        orchestrator.finish_question(session.code, HOST_ID)
    with pytest.raises(ConflictError):
        orchestrator.end_session(session.code, HOST_ID)
    assert orchestrator.get_session(session.code) == session


def test_start_twice_conflicts(orchestrator, session):
    orchestrator.start_session(session.code, HOST_ID)
    with pytest.raises(ConflictError):
        orchestrator.start_session(session.code, HOST_ID)


def test_code_lookup_is_case_insensitive(orchestrator, session):
    assert orchestrator.get_session(session.code.lower()).id == session.id


def test_unknown_code_is_not_found(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.get_session("ZZZZZZ")


def test_start_question_uses_next_index_by_default(orchestrator, live, three_question_quiz):
    assert live.phase is SessionPhase.QUESTION_LIVE
    assert live.current_question_id == first_question(three_question_quiz).id
    assert live.results_view is ResultsView.NONE
    assert live.question_started_at is not None


def test_start_question_with_explicit_index(orchestrator, session, three_question_quiz):
    orchestrator.start_session(session.code, HOST_ID)
    updated = orchestrator.start_question(session.code, HOST_ID, index=2)
    assert updated.current_question_id == three_question_quiz.questions[2].id
    assert updated.next_question_index == 2


def test_start_question_out_of_range(orchestrator, session):
    orchestrator.start_session(session.code, HOST_ID)
    with pytest.raises(ValidationError):
        orchestrator.start_question(session.code, HOST_ID, index=3)
    assert orchestrator.get_session(session.code).phase is SessionPhase.BETWEEN_QUESTIONS


def test_quiz_without_questions_cannot_start_a_question(orchestrator):
    quiz = orchestrator.catalog.add_quiz(build_quiz([]))
    session = orchestrator.create_session(quiz.id, HOST_ID)
    orchestrator.start_session(session.code, HOST_ID)
    with pytest.raises(ValidationError):
        orchestrator.start_question(session.code, HOST_ID)


def test_cannot_start_another_question_while_one_is_live(orchestrator, live):
    with pytest.raises(ConflictError):
        orchestrator.start_question(live.code, HOST_ID, index=1)


def test_finish_shows_bar_chart_and_is_idempotent(orchestrator, live):
    finished = orchestrator.finish_question(live.code, HOST_ID)
    assert finished.phase is SessionPhase.SHOWING_BAR_CHART
    again = orchestrator.finish_question(live.code, HOST_ID)
    assert again == finished


def test_finish_with_stale_question_id_is_noop(orchestrator, live, three_question_quiz):
    stale = three_question_quiz.questions[1].id
    unchanged = orchestrator.finish_question(live.code, HOST_ID, question_id=stale)
    assert unchanged.phase is SessionPhase.QUESTION_LIVE


def test_full_walk_through_all_questions(orchestrator, live, three_question_quiz):
    code = live.code
    for index, question in enumerate(three_question_quiz.questions):
        if index > 0:
            started = orchestrator.start_question(code, HOST_ID)
            assert started.current_question_id == question.id
        orchestrator.finish_question(code, HOST_ID)
        ranking = orchestrator.show_ranking(code, HOST_ID)
        assert ranking.phase is SessionPhase.SHOWING_RANKING
        back = orchestrator.back_to_chart(code, HOST_ID)
        assert back.phase is SessionPhase.SHOWING_BAR_CHART
        orchestrator.show_ranking(code, HOST_ID)
        moved = orchestrator.next_question(code, HOST_ID)
        if index < 2:
            assert moved.phase is SessionPhase.BETWEEN_QUESTIONS
            assert moved.current_question_id is None
            assert moved.results_view is ResultsView.NONE
    final = orchestrator.get_session(code)
    assert final.status is SessionStatus.FINISHED
    assert final.current_question_id is None
    assert final.ended_at is not None


def test_ranking_requires_bar_chart(orchestrator, live):
    with pytest.raises(ConflictError):
        orchestrator.show_ranking(live.code, HOST_ID)
    with pytest.raises(ConflictError):
        orchestrator.next_question(live.code, HOST_ID)


def test_end_finishes_and_later_actions_are_gone(orchestrator, live):
    ended = orchestrator.end_session(live.code, HOST_ID)
    assert ended.status is SessionStatus.FINISHED
    assert ended.results_view is ResultsView.NONE
    with pytest.raises(GoneError):
        orchestrator.end_session(live.code, HOST_ID)
    with pytest.raises(GoneError):
        orchestrator.start_question(live.code, HOST_ID)
    with pytest.raises(GoneError):
        orchestrator.join_session(live.code, "late", "Late")


def test_kick_after_end_is_gone_and_keeps_final_roster(orchestrator, live):
    orchestrator.end_session(live.code, HOST_ID)
    with pytest.raises(GoneError):
        orchestrator.kick_participant(live.code, HOST_ID, "p1")
    roster = [p.user_id for p in orchestrator.get_session_state(live.code).participants]
    assert sorted(roster) == ["p1", "p2", "p3"]


# --- Authorization ---


def test_host_actions_need_a_caller(orchestrator, session):
    with pytest.raises(UnauthorizedError):
        orchestrator.start_session(session.code, None)


def test_only_the_host_controls_the_session(orchestrator, session):
    with pytest.raises(ForbiddenError):
        orchestrator.start_session(session.code, OTHER_USER_ID)
    assert orchestrator.get_session(session.code).status is SessionStatus.WAITING


def test_private_quiz_cannot_be_hosted_by_others(orchestrator, three_question_quiz):
    with pytest.raises(ForbiddenError):
        orchestrator.create_session(three_question_quiz.id, OTHER_USER_ID)


def test_public_quiz_can_be_hosted_by_anyone(orchestrator):
    quiz = orchestrator.catalog.add_quiz(build_quiz([], is_public=True))
    session = orchestrator.create_session(quiz.id, OTHER_USER_ID)
    assert session.host_id == OTHER_USER_ID
    orchestrator.start_session(session.code, OTHER_USER_ID)


# --- Answers and scoring ---


def test_answer_rules(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    oslo = option_id(question, "Oslo")
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=oslo)
    with pytest.raises(ConflictError):
        orchestrator.submit_answer(live.id, question.id, "p1", option_id=oslo)
    with pytest.raises(ForbiddenError):
        orchestrator.submit_answer(live.id, question.id, "stranger", option_id=oslo)
    with pytest.raises(ValidationError):
        orchestrator.submit_answer(live.id, question.id, "p2")
    other_option = three_question_quiz.questions[1].options[0].id
    with pytest.raises(ValidationError):
        orchestrator.submit_answer(live.id, question.id, "p2", option_id=other_option)
    with pytest.raises(ConflictError):
        orchestrator.submit_answer(live.id, three_question_quiz.questions[1].id, "p2", option_id=other_option)


def test_answers_after_finish_are_rejected(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.finish_question(live.code, HOST_ID)
    with pytest.raises(ConflictError):
        orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))


def test_kicked_player_cannot_answer_but_keeps_history(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))
    orchestrator.kick_participant(live.code, HOST_ID, "p1")
    orchestrator.kick_participant(live.code, HOST_ID, "p2")
    with pytest.raises(ForbiddenError):
        orchestrator.submit_answer(live.id, question.id, "p2", option_id=option_id(question, "Oslo"))
    assert [a.user_id for a in orchestrator.answers_for_user(live.id, "p1", caller_id="p1")] == ["p1"]


def test_scores_from_live_question_stay_hidden(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))

    public = {p.user_id: p.score for p in orchestrator.get_session_state(live.code).participants}
    host = {p.user_id: p.score for p in orchestrator.live_stats(live.code, HOST_ID).participants}
    assert public["p1"] == 0
    assert host["p1"] == 1
    assert orchestrator.get_session_state(live.code).revealed_question_ids == set()
    with pytest.raises(ForbiddenError):
        orchestrator.answers_for_question(live.code, question.id, "p2")
    with pytest.raises(NotFoundError):
        orchestrator.question_result(live.code, question.id)

    orchestrator.finish_question(live.code, HOST_ID)
    public = {p.user_id: p.score for p in orchestrator.get_session_state(live.code).participants}
    assert public["p1"] == 1
    assert len(orchestrator.answers_for_question(live.code, question.id, "p2")) == 1


def test_end_to_end_single_question(orchestrator, single_question_quiz):
    question = single_question_quiz.questions[0]
    session = orchestrator.create_session(single_question_quiz.id, HOST_ID)
    orchestrator.start_session(session.code, HOST_ID)
    orchestrator.start_question(session.code, HOST_ID, index=0)
    orchestrator.join_session(session.code, "p1", "Player One")
    orchestrator.join_session(session.code, "p2", "Player Two")

    orchestrator.submit_answer(session.id, question.id, "p1", option_id=option_id(question, "B"))
    orchestrator.submit_answer(session.id, question.id, "p2", option_id=option_id(question, "A"))
    orchestrator.finish_question(session.code, HOST_ID)

    result = orchestrator.question_result(session.code, question.id)
    assert result.total_answers == 2
    assert result.correct_answers == 1
    assert result.answer_distribution == {option_id(question, "A"): 1, option_id(question, "B"): 1}
    ranking = orchestrator.ranking(session.code)
    assert [(row.user_id, row.score) for row in ranking] == [("p1", 1), ("p2", 0)]


# --- Auto-advance and timers ---


def answer_all(orchestrator, session, question, user_ids):
    for user_id in user_ids:
        orchestrator.submit_answer(session.id, question.id, user_id, option_id=question.options[0].id)


def test_auto_advance_when_everyone_answered(orchestrator, live, three_question_quiz, clock):
    answer_all(orchestrator, live, first_question(three_question_quiz), ["p1", "p2", "p3"])

    armed = orchestrator.evaluate_auto_advance(live.code)
    assert armed.phase is SessionPhase.QUESTION_LIVE
    assert armed.all_answered_at == clock.now

    clock.advance(1)
    assert orchestrator.evaluate_auto_advance(live.code).phase is SessionPhase.QUESTION_LIVE

    clock.advance(2)
    state = orchestrator.get_session_state(live.code)
    assert state.session.phase is SessionPhase.SHOWING_BAR_CHART
    assert orchestrator.question_result(live.code, first_question(three_question_quiz).id).total_answers == 3


def test_partial_answers_keep_question_live(orchestrator, live, three_question_quiz, clock):
    answer_all(orchestrator, live, first_question(three_question_quiz), ["p1", "p2"])
    clock.advance(10)
    assert orchestrator.evaluate_auto_advance(live.code).phase is SessionPhase.QUESTION_LIVE


def test_kick_lowers_the_threshold(orchestrator, live, three_question_quiz, clock):
    answer_all(orchestrator, live, first_question(three_question_quiz), ["p1", "p2"])
    orchestrator.kick_participant(live.code, HOST_ID, "p3")
    orchestrator.evaluate_auto_advance(live.code)
    clock.advance(5)
    assert orchestrator.evaluate_auto_advance(live.code).phase is SessionPhase.SHOWING_BAR_CHART


def test_timer_expiry_is_checked_against_server_clock(orchestrator, live, three_question_quiz, clock):
    question = first_question(three_question_quiz)
    deadline = orchestrator.get_session_state(live.code).question_deadline
    assert deadline == live.question_started_at + timedelta(seconds=20)

    clock.advance(5)
    assert orchestrator.expire_question_timer(live.code, question.id).phase is SessionPhase.QUESTION_LIVE

    clock.advance(15)
    assert orchestrator.expire_question_timer(live.code, question.id).phase is SessionPhase.SHOWING_BAR_CHART
    again = orchestrator.expire_question_timer(live.code, question.id)
    assert again.phase is SessionPhase.SHOWING_BAR_CHART


def test_delete_session_removes_everything(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))
    orchestrator.delete_session(live.code, HOST_ID)
    with pytest.raises(NotFoundError):
        orchestrator.get_session(live.code)
    with pytest.raises(NotFoundError):
        orchestrator.answers_for_user(live.id, "p1")


def test_reconcile_scores_via_host(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))
    scores = {p.user_id: p.score for p in orchestrator.reconcile_scores(live.code, HOST_ID)}
    assert scores == {"p1": 1, "p2": 0, "p3": 0}


def test_live_answers_are_private_until_revealed(orchestrator, live, three_question_quiz):
    question = first_question(three_question_quiz)
    orchestrator.submit_answer(live.id, question.id, "p1", option_id=option_id(question, "Oslo"))

    assert orchestrator.answers_for_user(live.id, "p1") == []
    assert orchestrator.answers_for_user(live.id, "p1", caller_id="p2") == []
    assert len(orchestrator.answers_for_user(live.id, "p1", caller_id="p1")) == 1
    assert len(orchestrator.answers_for_user(live.id, "p1", caller_id=HOST_ID)) == 1

    orchestrator.finish_question(live.code, HOST_ID)
    assert len(orchestrator.answers_for_user(live.id, "p1", caller_id="p2")) == 1

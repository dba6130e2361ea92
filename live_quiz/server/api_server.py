"""FastAPI server exposing host and participant endpoints for live sessions."""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
import uvicorn

from live_quiz.config import Settings, get_settings
from live_quiz.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from live_quiz.constants.network_constants import (
    GUEST_COOKIE_PREFIX,
    USER_ID_HEADER,
    USER_NAME_HEADER,
)
from live_quiz.core.errors import QuizSessionError, UnauthorizedError
from live_quiz.core.guest_identity import NameAssigner, new_guest_id
from live_quiz.core.models import (
    Answer,
    AnswerDistribution,
    AnswerWithParticipant,
    Participant,
    Question,
    QuestionResult,
    QuizSession,
)
from live_quiz.core.services.scoreboard import RankingRow
from live_quiz.core.session_orchestrator import LiveStats, SessionOrchestrator, SessionState

logger = logging.getLogger(__name__)


class CreateSessionPayload(BaseModel):
    """Payload schema for hosting a quiz."""

    quiz_id: int


class StartQuestionPayload(BaseModel):
    index: int | None = Field(default=None, ge=0)


class FinishQuestionPayload(BaseModel):
    question_id: int | None = None


class ExpireQuestionPayload(BaseModel):
    question_id: int


class JoinPayload(BaseModel):
    """Payload schema for the join flow."""

    user_name: str | None = Field(default=None, max_length=80)


class AnswerPayload(BaseModel):
    """Payload schema for submitted answers."""

    session_id: int
    question_id: int
    option_id: int | None = None
    answer_text: str | None = Field(default=None, max_length=500)
    player_id: str | None = None

    @model_validator(mode="after")
    def _require_option_or_text(self) -> "AnswerPayload":
        if self.option_id is None and not (self.answer_text and self.answer_text.strip()):
            raise ValueError("Either answer_text or option_id must be provided")
        return self


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _session_dict(session: QuizSession) -> dict[str, object]:
    return {
        "id": session.id,
        "code": session.code,
        "quiz_id": session.quiz_id,
        "status": session.status.value,
        "phase": session.phase.value,
        "current_question_id": session.current_question_id,
        "results_view": session.results_view.value,
        "next_question_index": session.next_question_index,
        "question_started_at": _iso(session.question_started_at),
        "created_at": _iso(session.created_at),
        "started_at": _iso(session.started_at),
        "ended_at": _iso(session.ended_at),
    }


def _participant_dict(participant: Participant) -> dict[str, object]:
    return {
        "id": participant.id,
        "user_id": participant.user_id,
        "user_name": participant.user_name,
        "display_name": participant.display_name,
        "score": participant.score,
        "joined_at": _iso(participant.joined_at),
    }


def _question_dict(question: Question, reveal: bool) -> dict[str, object]:
    return {
        "id": question.id,
        "type": question.type.value,
        "text": question.text,
        "image_url": question.image_url,
        "order": question.order,
        "time_limit": question.time_limit,
        "options": [
            {
                "id": option.id,
                "text": option.text,
                "order": option.order,
                "is_correct": option.is_correct if reveal else None,
            }
            for option in question.options
        ],
    }


def _answer_dict(answer: Answer) -> dict[str, object]:
    return {
        "id": answer.id,
        "session_id": answer.session_id,
        "question_id": answer.question_id,
        "user_id": answer.user_id,
        "option_id": answer.option_id,
        "answer_text": answer.answer_text,
        "is_correct": answer.is_correct,
        "answered_at": _iso(answer.answered_at),
    }


def _distribution_dict(stats: AnswerDistribution) -> dict[str, object]:
    return {
        "total": stats.total,
        "correct": stats.correct,
        "incorrect": stats.incorrect,
        "by_option": {str(option_id): count for option_id, count in stats.by_option.items()},
    }


def _result_dict(result: QuestionResult) -> dict[str, object]:
    return {
        "id": result.id,
        "session_id": result.session_id,
        "question_id": result.question_id,
        "answer_distribution": {
            str(option_id): count for option_id, count in result.answer_distribution.items()
        },
        "total_answers": result.total_answers,
        "correct_answers": result.correct_answers,
        "shown_at": _iso(result.shown_at),
    }


def _state_dict(state: SessionState, poll_interval: float) -> dict[str, object]:
    payload = _session_dict(state.session)
    payload["quiz"] = {
        "id": state.quiz.id,
        "title": state.quiz.title,
        "questions": [
            _question_dict(question, reveal=question.id in state.revealed_question_ids)
            for question in state.quiz.questions
        ],
    }
    payload["participants"] = [_participant_dict(p) for p in state.participants]
    payload["question_deadline"] = _iso(state.question_deadline)
    payload["server_time"] = _iso(state.server_time)
    payload["poll_interval_seconds"] = poll_interval
    return payload


def _live_dict(stats: LiveStats) -> dict[str, object]:
    return {
        "session": {
            "id": stats.session.id,
            "status": stats.session.status.value,
            "current_question_id": stats.session.current_question_id,
            "results_view": stats.session.results_view.value,
        },
        "participants": [_participant_dict(p) for p in stats.participants],
        "answer_stats": _distribution_dict(stats.answer_stats) if stats.answer_stats else None,
    }


def _ranking_dict(row: RankingRow) -> dict[str, object]:
    return {
        "position": row.position,
        "user_id": row.user_id,
        "display_name": row.display_name,
        "score": row.score,
        "correct_answers": row.correct_answers,
        "total_answers": row.total_answers,
    }


def _answer_with_name_dict(row: AnswerWithParticipant) -> dict[str, object]:
    payload = _answer_dict(row.answer)
    payload["display_name"] = row.display_name
    return payload


def _error_response(status_code: int, message: str, error_type: str, details: object = None) -> JSONResponse:
    error: dict[str, object] = {"message": message, "type": error_type, "status_code": status_code}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def _caller_id(request: Request) -> str | None:
    return request.headers.get(USER_ID_HEADER) or None


def _guest_cookie_name(code: str) -> str:
    return f"{GUEST_COOKIE_PREFIX}{code.upper()}"


def _get_orchestrator_dependency(orchestrator: SessionOrchestrator):
    def dependency() -> SessionOrchestrator:
        return orchestrator

    return dependency


def create_api_app(orchestrator: SessionOrchestrator, settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided orchestrator."""
    settings = settings or get_settings()
    app = FastAPI(title=f"{APP_NAME} API", description=APP_ABOUT_TEXT, version=APP_VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    orchestrator_dep = _get_orchestrator_dependency(orchestrator)
    name_assigner = NameAssigner.with_default_names()

    @app.exception_handler(QuizSessionError)
    async def session_error_handler(request: Request, exc: QuizSessionError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
        return _error_response(exc.status_code, exc.message, exc.error_type, getattr(exc, "details", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
        return _error_response(422, "Validation error", "validation_error", details)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An internal error occurred", "internal_error")

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "version": APP_VERSION}

    # --- Host endpoints ---

    @app.post("/api/sessions", status_code=201)
    def create_session(
        payload: CreateSessionPayload,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        session = manager.create_session(payload.quiz_id, _caller_id(request))
        return _state_dict(manager.get_session_state(session.code), settings.poll_interval_seconds)

    @app.delete("/api/sessions/{code}", status_code=204)
    def delete_session(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> Response:
        manager.delete_session(code, _caller_id(request))
        return Response(status_code=204)

    @app.post("/api/sessions/{code}/start")
    def start_session(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.start_session(code, _caller_id(request)))

    @app.post("/api/sessions/{code}/questions/start")
    def start_question(
        code: str,
        request: Request,
        payload: StartQuestionPayload | None = None,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        index = payload.index if payload else None
        return _session_dict(manager.start_question(code, _caller_id(request), index=index))

    @app.post("/api/sessions/{code}/questions/finish")
    def finish_question(
        code: str,
        request: Request,
        payload: FinishQuestionPayload | None = None,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        question_id = payload.question_id if payload else None
        return _session_dict(manager.finish_question(code, _caller_id(request), question_id=question_id))

    @app.post("/api/sessions/{code}/questions/expire")
    def expire_question(
        code: str,
        payload: ExpireQuestionPayload,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.expire_question_timer(code, payload.question_id))

    @app.post("/api/sessions/{code}/ranking")
    def show_ranking(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.show_ranking(code, _caller_id(request)))

    @app.post("/api/sessions/{code}/chart")
    def back_to_chart(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.back_to_chart(code, _caller_id(request)))

    @app.post("/api/sessions/{code}/next")
    def next_question(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.next_question(code, _caller_id(request)))

    @app.post("/api/sessions/{code}/end")
    def end_session(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _session_dict(manager.end_session(code, _caller_id(request)))

    @app.delete("/api/sessions/{code}/participants/{user_id}")
    def kick_participant(
        code: str,
        user_id: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _participant_dict(manager.kick_participant(code, _caller_id(request), user_id))

    @app.post("/api/sessions/{code}/results")
    def compute_results(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _result_dict(manager.compute_results(code, _caller_id(request)))

    @app.post("/api/sessions/{code}/reconcile")
    def reconcile_scores(
        code: str,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> list[dict[str, object]]:
        return [_participant_dict(p) for p in manager.reconcile_scores(code, _caller_id(request))]

    @app.get("/api/live")
    def live_stats(
        request: Request,
        session_code: str = Query(..., min_length=1),
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _live_dict(manager.live_stats(session_code, _caller_id(request)))

    # --- Shared polling endpoints ---

    @app.get("/api/sessions/{code}")
    def get_session_state(
        code: str,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _state_dict(manager.get_session_state(code), settings.poll_interval_seconds)

    @app.get("/api/sessions/{code}/ranking")
    def get_ranking(
        code: str,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> list[dict[str, object]]:
        return [_ranking_dict(row) for row in manager.ranking(code)]

    @app.get("/api/sessions/{code}/results/{question_id}")
    def get_question_result(
        code: str,
        question_id: int,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        return _result_dict(manager.question_result(code, question_id))

    @app.get("/api/sessions/{code}/questions/{question_id}/answers")
    def get_question_answers(
        code: str,
        question_id: int,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> list[dict[str, object]]:
        rows = manager.answers_for_question(code, question_id, _caller_id(request))
        return [_answer_with_name_dict(row) for row in rows]

    # --- Participant endpoints ---

    @app.post("/api/sessions/{code}/join")
    def join_session(
        code: str,
        request: Request,
        response: Response,
        payload: JoinPayload | None = None,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        session = manager.get_session(code)
        cookie_name = _guest_cookie_name(session.code)
        user_id = _caller_id(request) or request.cookies.get(cookie_name)
        if user_id is None:
            user_id = new_guest_id()
            response.set_cookie(
                key=cookie_name,
                value=user_id,
                max_age=settings.guest_cookie_max_age_seconds,
                samesite="lax",
                httponly=True,
                secure=settings.cookie_secure,
            )

        chosen_name = payload.user_name.strip() if payload and payload.user_name else ""
        if not chosen_name:
            chosen_name = request.headers.get(USER_NAME_HEADER, "").strip() or name_assigner.next_name()

        participant, created = manager.join_session(session.code, user_id, chosen_name)
        response.status_code = 201 if created else 200
        body = _participant_dict(participant)
        body["player_id"] = user_id
        body["session_id"] = session.id
        return body

    @app.post("/api/answers", status_code=201)
    def submit_answer(
        payload: AnswerPayload,
        request: Request,
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> dict[str, object]:
        user_id = _caller_id(request) or payload.player_id
        if user_id is None:
            session = _find_session(manager, payload.session_id)
            if session is not None:
                user_id = request.cookies.get(_guest_cookie_name(session.code))
        if not user_id:
            raise UnauthorizedError("Player ID is required")
        answer = manager.submit_answer(
            payload.session_id,
            payload.question_id,
            user_id,
            option_id=payload.option_id,
            answer_text=payload.answer_text,
        )
        return _answer_dict(answer)

    @app.get("/api/answers")
    def get_own_answers(
        request: Request,
        session_id: int = Query(...),
        manager: SessionOrchestrator = Depends(orchestrator_dep),
    ) -> list[dict[str, object]]:
        session = manager.get_session_by_id(session_id)
        user_id = _caller_id(request) or request.cookies.get(_guest_cookie_name(session.code))
        if not user_id:
            raise UnauthorizedError("Player ID is required")
        answers = manager.answers_for_user(session.id, user_id, caller_id=user_id)
        return [_answer_dict(answer) for answer in answers]

    return app


def _find_session(manager: SessionOrchestrator, session_id: int) -> QuizSession | None:
    try:
        return manager.get_session_by_id(session_id)
    except QuizSessionError:
        return None


def run_api_server(orchestrator: SessionOrchestrator, settings: Settings | None = None) -> None:
    """Serve the API with uvicorn until interrupted."""
    settings = settings or get_settings()
    app = create_api_app(orchestrator, settings)
    config = uvicorn.Config(
        app=app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    server.run()

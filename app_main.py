"""Application entry point for the live quiz server."""

from __future__ import annotations

from live_quiz.config import get_settings
from live_quiz.core.quiz_importer import load_quiz_from_file
from live_quiz.core.services.quiz_catalog import QuizCatalog
from live_quiz.core.session_orchestrator import SessionOrchestrator
from live_quiz.server.api_server import run_api_server
from live_quiz.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, load quiz content, and serve the API."""
    settings = get_settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting live quiz server…")

    catalog = QuizCatalog()
    if settings.quiz_file is not None:
        quiz = catalog.add_quiz(load_quiz_from_file(settings.quiz_file))
        logger.info(
            "Loaded quiz %d '%s' with %d question(s) from %s",
            quiz.id,
            quiz.title,
            len(quiz.questions),
            settings.quiz_file,
        )

    orchestrator = SessionOrchestrator.from_settings(catalog, settings)
    logger.info("Serving on http://%s:%d/", settings.host, settings.port)
    run_api_server(orchestrator, settings)


if __name__ == "__main__":
    main()

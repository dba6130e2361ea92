"""Static metadata describing the live quiz service."""

APP_NAME = "Live Quiz"
APP_VERSION = "0.1.0"
APP_ABOUT_TEXT = (
    "Live Quiz runs hosted trivia sessions: hosts publish a quiz under a short join code, "
    "players answer timed questions from their browsers, and everyone polls for results."
)

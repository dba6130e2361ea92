"""Short join-code generation with a bounded collision retry."""

from __future__ import annotations

from collections.abc import Callable
import logging
import random

from live_quiz.constants.session_constants import (
    JOIN_CODE_ALPHABET,
    JOIN_CODE_LENGTH,
    JOIN_CODE_MAX_ATTEMPTS,
)
from live_quiz.core.errors import ResourceExhaustedError

logger = logging.getLogger(__name__)

_system_rng = random.SystemRandom()


def generate_code(length: int = JOIN_CODE_LENGTH, rng: random.Random | None = None) -> str:
    chooser = rng or _system_rng
    return "".join(chooser.choice(JOIN_CODE_ALPHABET) for _ in range(length))


def generate_unique_code(
    exists: Callable[[str], bool],
    max_attempts: int = JOIN_CODE_MAX_ATTEMPTS,
    rng: random.Random | None = None,
) -> str:
    """Return a code for which ``exists`` is false.

    Raises ResourceExhaustedError once ``max_attempts`` candidates have all
    collided.
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_code(rng=rng)
        if not exists(code):
            return code
        logger.debug("Join code %s already taken (attempt %d/%d)", code, attempt, max_attempts)
    logger.error("Failed to generate a unique join code after %d attempts", max_attempts)
    raise ResourceExhaustedError(
        f"Failed to generate unique code after {max_attempts} attempts"
    )

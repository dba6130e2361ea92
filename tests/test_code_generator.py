import random
import re

import pytest

from live_quiz.core.code_generator import generate_code, generate_unique_code
from live_quiz.core.errors import ResourceExhaustedError


def test_generated_code_is_six_uppercase_alphanumerics():
    code = generate_code(rng=random.Random(1))
    assert re.fullmatch(r"[A-Z0-9]{6}", code)


def test_unique_code_retries_past_collisions():
    taken = set()
    rng = random.Random(3)
    first = generate_code(rng=random.Random(3))
    taken.add(first)
    calls = []

    def exists(code: str) -> bool:
        calls.append(code)
        return code in taken

    code = generate_unique_code(exists, rng=rng)
    assert code not in taken
    assert calls[0] == first
    assert len(calls) == 2


def test_unique_code_gives_up_after_max_attempts():
    attempts = []

    def always_taken(code: str) -> bool:
        attempts.append(code)
        return True

    with pytest.raises(ResourceExhaustedError):
        generate_unique_code(always_taken, max_attempts=4)
    assert len(attempts) == 4

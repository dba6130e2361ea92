"""Guest identifiers and fallback display names for anonymous players."""

from __future__ import annotations

from collections import deque
import itertools
import random
from threading import Lock
from uuid import uuid4

from live_quiz.constants.session_constants import GUEST_ID_PREFIX

_ADJECTIVES = [
    "Brave",
    "Clever",
    "Curious",
    "Daring",
    "Eager",
    "Gentle",
    "Jolly",
    "Lucky",
    "Mighty",
    "Nimble",
    "Quick",
    "Sly",
    "Sunny",
    "Witty",
]
_ANIMALS = [
    "Badger",
    "Falcon",
    "Fox",
    "Heron",
    "Koala",
    "Lynx",
    "Marmot",
    "Otter",
    "Panda",
    "Puffin",
    "Tiger",
    "Walrus",
]


def new_guest_id() -> str:
    """Return a fresh identifier for a player without an account."""
    return f"{GUEST_ID_PREFIX}{uuid4().hex}"


class NameAssigner:
    """Hands out shuffled, non-repeating display names until the pool is exhausted."""

    def __init__(self, names: list[str], rng: random.Random | None = None):
        cleaned = [name.strip() for name in names if name.strip()]
        if not cleaned:
            raise ValueError("Name list cannot be empty.")
        self._names = cleaned
        self._pool: deque[str] = deque()
        self._lock = Lock()
        self._rng = rng or random.Random()
        self._refill_pool()

    @classmethod
    def with_default_names(cls, rng: random.Random | None = None) -> "NameAssigner":
        names = [f"{adjective} {animal}" for adjective, animal in itertools.product(_ADJECTIVES, _ANIMALS)]
        return cls(names, rng=rng)

    def next_name(self) -> str:
        with self._lock:
            if not self._pool:
                self._refill_pool()
            return self._pool.popleft()

    def _refill_pool(self) -> None:
        shuffled = list(self._names)
        self._rng.shuffle(shuffled)
        self._pool.extend(shuffled)

"""In-process persistence boundary for session, participant, answer and result rows.

Each table is keyed by its natural unique key, so the uniqueness rules of the
live-session model are enforced by the storage itself rather than by
check-then-act code in the services:

    sessions            id, plus a unique index on ``code``
    participants        (session_id, user_id)
    answers             (session_id, question_id, user_id)
    question_results    (session_id, question_id)

Rows are treated as immutable values. Updates swap in a copy made with
``dataclasses.replace`` which lets a transaction roll back by restoring the
previous row mappings.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager
import dataclasses
import itertools
import logging
from threading import RLock
from typing import Any, Generic, TypeVar

from live_quiz.core.models import Answer, Participant, QuestionResult, QuizSession

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class UniqueViolation(Exception):
    """Raised when an insert collides with an existing unique key."""

    def __init__(self, table: str, key: Hashable) -> None:
        super().__init__(f"Duplicate key {key!r} in table '{table}'")
        self.table = table
        self.key = key


class Table(Generic[K, R]):
    """Keyed row container with optional secondary unique indexes."""

    def __init__(
        self,
        name: str,
        key: Callable[[R], K],
        unique: dict[str, Callable[[R], Hashable]] | None = None,
        lock: RLock | None = None,
    ) -> None:
        self.name = name
        self._lock = lock or RLock()
        self._key = key
        self._rows: dict[K, R] = {}
        self._unique = dict(unique or {})
        self._indexes: dict[str, dict[Hashable, K]] = {name: {} for name in self._unique}

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def get(self, key: K) -> R | None:
        with self._lock:
            return self._rows.get(key)

    def find_unique(self, index: str, value: Hashable) -> R | None:
        with self._lock:
            primary = self._indexes[index].get(value)
            return None if primary is None else self._rows.get(primary)

    def select(self, predicate: Callable[[R], bool] | None = None) -> list[R]:
        """Rows matching ``predicate``, read under the lock shared with writers."""
        with self._lock:
            rows = list(self._rows.values())
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    def insert(self, row: R) -> R:
        key = self._key(row)
        with self._lock:
            if key in self._rows:
                raise UniqueViolation(self.name, key)
            for index_name, extract in self._unique.items():
                value = extract(row)
                if value in self._indexes[index_name]:
                    raise UniqueViolation(f"{self.name}.{index_name}", value)
            self._rows[key] = row
            self._index(key, row)
        return row

    def upsert(self, row: R, merge: Callable[[R, R], R] | None = None) -> R:
        """Insert ``row`` or replace the existing row with the same key.

        ``merge(existing, new)`` may decide which fields survive, e.g. to keep
        the existing row id.
        """
        key = self._key(row)
        with self._lock:
            existing = self._rows.get(key)
            if existing is None:
                return self.insert(row)
            stored = merge(existing, row) if merge else row
            self._unindex(key, existing)
            self._rows[key] = stored
            self._index(key, stored)
        return stored

    def update(self, key: K, **changes: Any) -> R:
        with self._lock:
            existing = self._rows.get(key)
            if existing is None:
                raise KeyError(key)
            updated = dataclasses.replace(existing, **changes)
            self._unindex(key, existing)
            self._rows[key] = updated
            self._index(key, updated)
        return updated

    def delete(self, key: K) -> R | None:
        with self._lock:
            row = self._rows.pop(key, None)
            if row is not None:
                self._unindex(key, row)
        return row

    def delete_where(self, predicate: Callable[[R], bool]) -> int:
        with self._lock:
            doomed = [key for key, row in self._rows.items() if predicate(row)]
            for key in doomed:
                self.delete(key)
        return len(doomed)

    def snapshot(self) -> tuple[dict[K, R], dict[str, dict[Hashable, K]]]:
        with self._lock:
            return dict(self._rows), {name: dict(index) for name, index in self._indexes.items()}

    def restore(self, state: tuple[dict[K, R], dict[str, dict[Hashable, K]]]) -> None:
        with self._lock:
            self._rows, self._indexes = state

    def _index(self, key: K, row: R) -> None:
        for index_name, extract in self._unique.items():
            self._indexes[index_name][extract(row)] = key

    def _unindex(self, key: K, row: R) -> None:
        for index_name, extract in self._unique.items():
            value = extract(row)
            if self._indexes[index_name].get(value) == key:
                del self._indexes[index_name][value]


class InMemoryDatabase:
    """Thread-safe store shared by the session services.

    Every table shares the database lock, so a single read never observes a
    half-applied write. Multi-step work that must be atomic runs inside
    ``transaction()``, which holds the same lock for the whole block and
    restores every table if the block raises.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._depth = 0
        self._sequences: dict[str, Iterator[int]] = {}
        self.sessions: Table[int, QuizSession] = Table(
            "sessions", key=lambda s: s.id, unique={"code": lambda s: s.code}, lock=self._lock
        )
        self.participants: Table[tuple[int, str], Participant] = Table(
            "participants", key=lambda p: (p.session_id, p.user_id), lock=self._lock
        )
        self.answers: Table[tuple[int, int, str], Answer] = Table(
            "answers", key=lambda a: (a.session_id, a.question_id, a.user_id), lock=self._lock
        )
        self.question_results: Table[tuple[int, int], QuestionResult] = Table(
            "question_results", key=lambda r: (r.session_id, r.question_id), lock=self._lock
        )

    @property
    def tables(self) -> tuple[Table[Any, Any], ...]:
        return (self.sessions, self.participants, self.answers, self.question_results)

    def next_id(self, table: str) -> int:
        with self._lock:
            sequence = self._sequences.setdefault(table, itertools.count(1))
            return next(sequence)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryDatabase"]:
        with self._lock:
            outermost = self._depth == 0
            saved = [table.snapshot() for table in self.tables] if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if saved is not None:
                    for table, state in zip(self.tables, saved):
                        table.restore(state)
                    logger.debug("Transaction rolled back")
                raise
            finally:
                self._depth -= 1

    def delete_session_cascade(self, session_id: int) -> None:
        with self.transaction():
            self.participants.delete_where(lambda p: p.session_id == session_id)
            self.answers.delete_where(lambda a: a.session_id == session_id)
            self.question_results.delete_where(lambda r: r.session_id == session_id)
            self.sessions.delete(session_id)

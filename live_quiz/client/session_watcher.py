"""Polling client that turns session snapshots into change events.

Clients never receive pushes. They re-fetch ``GET /api/sessions/{code}`` on
a fixed interval and compare consecutive snapshots: a new
``current_question_id`` resets local answer state, a ``results_view``
change switches the display, and a player missing from the participant
list of a live session has been kicked.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Any

import httpx

from live_quiz.config import Settings
from live_quiz.constants.session_constants import KICK_GRACE_SECONDS, POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]


class SyncEventType(str, Enum):
    STATUS_CHANGED = "status_changed"
    QUESTION_CHANGED = "question_changed"
    RESULTS_VIEW_CHANGED = "results_view_changed"
    KICKED = "kicked"
    FINISHED = "finished"
    SESSION_DELETED = "session_deleted"


_TERMINAL_EVENTS = {SyncEventType.KICKED, SyncEventType.FINISHED, SyncEventType.SESSION_DELETED}


@dataclass(slots=True)
class SyncEvent:
    type: SyncEventType
    previous: Any = None
    current: Any = None


def _participant_ids(snapshot: Snapshot) -> set[str]:
    return {p["user_id"] for p in snapshot.get("participants", [])}


def detect_sync_events(previous: Snapshot | None, current: Snapshot, user_id: str | None = None) -> list[SyncEvent]:
    """Compare two polled snapshots and describe what changed."""
    events: list[SyncEvent] = []
    finished = current["status"] == "finished"

    if previous is None:
        if finished:
            events.append(SyncEvent(SyncEventType.FINISHED, None, current["status"]))
        return events

    if previous["status"] != current["status"]:
        events.append(SyncEvent(SyncEventType.STATUS_CHANGED, previous["status"], current["status"]))
    if finished:
        if previous["status"] != "finished":
            events.append(SyncEvent(SyncEventType.FINISHED, previous["status"], current["status"]))
        return events

    if previous.get("current_question_id") != current.get("current_question_id"):
        events.append(
            SyncEvent(
                SyncEventType.QUESTION_CHANGED,
                previous.get("current_question_id"),
                current.get("current_question_id"),
            )
        )
    if previous.get("results_view") != current.get("results_view"):
        events.append(
            SyncEvent(
                SyncEventType.RESULTS_VIEW_CHANGED,
                previous.get("results_view"),
                current.get("results_view"),
            )
        )
    if user_id is not None and user_id in _participant_ids(previous) and user_id not in _participant_ids(current):
        events.append(SyncEvent(SyncEventType.KICKED, user_id, None))
    return events


class SessionWatcher:
    """Polls one session on behalf of a host or participant."""

    def __init__(
        self,
        client: httpx.Client,
        code: str,
        user_id: str | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        kick_grace: float = KICK_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._code = code.upper()
        self._user_id = user_id
        self._poll_interval = poll_interval
        self._kick_grace = kick_grace
        self._sleep = sleep
        self._snapshot: Snapshot | None = None

    @classmethod
    def from_settings(
        cls,
        client: httpx.Client,
        code: str,
        user_id: str | None,
        settings: Settings,
    ) -> "SessionWatcher":
        return cls(
            client,
            code,
            user_id=user_id,
            poll_interval=settings.poll_interval_seconds,
            kick_grace=settings.kick_grace_seconds,
        )

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def poll_once(self) -> list[SyncEvent]:
        """Fetch the session once and return the changes since the previous poll."""
        response = self._client.get(f"/api/sessions/{self._code}")
        if response.status_code == 404:
            return [SyncEvent(SyncEventType.SESSION_DELETED, self._code, None)]
        response.raise_for_status()
        current = response.json()
        events = detect_sync_events(self._snapshot, current, self._user_id)
        self._snapshot = current
        return events

    def run(
        self,
        on_event: Callable[[SyncEvent, Snapshot | None], None] | None = None,
        max_polls: int | None = None,
    ) -> SyncEvent | None:
        """Poll until the session finishes, disappears, or this user is kicked.

        Returns the terminal event, or None when ``max_polls`` ran out first.
        A kick is reported immediately but the loop only exits after the
        grace delay, so the removal notice stays readable.
        """
        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            try:
                events = self.poll_once()
            except httpx.TransportError as exc:
                logger.warning("Polling session %s failed: %s", self._code, exc)
                self._sleep(self._poll_interval)
                continue

            for event in events:
                if on_event is not None:
                    on_event(event, self._snapshot)
            terminal = next((event for event in events if event.type in _TERMINAL_EVENTS), None)
            if terminal is not None:
                if terminal.type is SyncEventType.KICKED:
                    logger.info("Removed from session %s by the host", self._code)
                    self._sleep(self._kick_grace)
                return terminal
            self._sleep(self._poll_interval)
        return None

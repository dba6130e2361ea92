"""Polling client helpers for hosts and participants."""

from .session_watcher import SessionWatcher, SyncEvent, SyncEventType, detect_sync_events

__all__ = ["SessionWatcher", "SyncEvent", "SyncEventType", "detect_sync_events"]

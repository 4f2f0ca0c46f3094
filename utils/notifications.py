# utils/notifications.py

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

APPLICATION_CREATED = "application_created"
APPLICATION_UPDATED = "application_updated"

Listener = Callable[[Dict[str, Any]], None]


class EventNotifier:
    """Fire-and-forget side channel for UI refresh events.

    Listeners are called synchronously; a failing listener is logged and
    never affects the caller or the other listeners.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, event: str, callback: Listener) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(event) or []
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners.get(event) or []):
            try:
                callback(payload)
            except Exception:
                logger.exception("Listener for %s failed", event)

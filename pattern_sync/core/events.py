"""
Named event notifications emitted by the sync layer.

The scheduler and orchestrator never render anything themselves; they emit
events and whoever is listening (the CLI, a UI, a test) decides how to
present them.

Usage:
    events = EventEmitter()
    unsubscribe = events.on(Events.TRACK_SAVED, lambda **kw: print(kw["track_id"]))
    events.emit(Events.TRACK_SAVED, track_id="abc")
    unsubscribe()
"""

from collections import defaultdict
from typing import Any, Callable

from pattern_sync.core.logger import get_logger


logger = get_logger(__name__)


class Events:
    """Event names. Payloads are keyword arguments (track_id, folder_id, message, ...)."""
    TRACK_SAVED = "trackSaved"
    SAVE_FAILED = "saveFailed"
    TRACK_CREATED = "trackCreated"
    CREATE_FAILED = "createFailed"
    TRACK_UPDATED = "trackUpdated"
    UPDATE_FAILED = "updateFailed"
    TRACK_DELETED = "trackDeleted"
    DELETE_FAILED = "deleteFailed"
    ALL_TRACKS_DELETED = "allTracksDeleted"
    FOLDER_CREATED = "folderCreated"
    FOLDER_UPDATED = "folderUpdated"
    FOLDER_DELETED = "folderDeleted"
    AUTH_REQUIRED = "authRequired"
    ITEM_NOT_FOUND = "itemNotFound"


Listener = Callable[..., Any]


class EventEmitter:
    """
    Minimal synchronous publish/subscribe hub.

    Listeners run in registration order on the emitting coroutine. A listener
    that raises is logged and does not stop the remaining listeners, so a
    broken subscriber can never abort a save or delete.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for an event.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def on_any(self, listener: Callable[..., Any]) -> Callable[[], None]:
        """Register a listener called as listener(event, **payload) for every event."""
        return self.on("*", listener)

    def emit(self, event: str, **payload: Any) -> None:
        logger.debug(f"Event {event}: {payload}")

        for listener in list(self._listeners.get(event, ())):
            try:
                listener(**payload)
            except Exception as e:
                logger.error(f"Listener for '{event}' raised: {e}", exc_info=True)

        for listener in list(self._listeners.get("*", ())):
            try:
                listener(event, **payload)
            except Exception as e:
                logger.error(f"Listener for '{event}' raised: {e}", exc_info=True)

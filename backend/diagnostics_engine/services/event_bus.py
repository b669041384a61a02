"""
EventBus Class - Synchronous publish/subscribe

Every other component emits through this bus.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]

EVENT_LOG = "log"
EVENT_LOGS_CLEARED = "logsCleared"
EVENT_NETWORK_STATUS_CHANGE = "networkStatusChange"
EVENT_ERROR = "error"
EVENT_UNHANDLED_REJECTION = "unhandledRejection"
EVENT_SUMMARY_UPDATED = "summaryUpdated"
EVENT_DISPOSED = "disposed"


class EventBus:
    """
    Synchronous fan-out of named events.
    Callbacks run in registration order on the emitter's stack; one failing
    callback is logged and skipped, never propagated.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callback]] = {}

    def subscribe(self, event: str, callback: Callback) -> Callable[[], None]:
        """Register callback, returns an unsubscribe function"""
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._listeners.get(event)
            if not callbacks:
                return
            try:
                callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        # Copy so callbacks may unsubscribe while dispatching
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(payload)
            except Exception:
                logger.exception("Error in diagnostics listener for event %s", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def clear(self) -> None:
        self._listeners.clear()

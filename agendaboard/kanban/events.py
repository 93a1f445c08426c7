"""
Event bridge: tells subscribers (UI re-render, realtime fan-out) that a
board changed.

BoardStore emits "board_changed" once per successful mutation and never
for no-ops or failed mutations. Subscriber failures are logged and do not
reach the caller or the other subscribers.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

BOARD_CHANGED = "board_changed"


class BoardEventBridge:
    """Routes board events to registered callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        self.subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> bool:
        """Remove a callback. Returns False if it was not registered."""
        callbacks = self.subscribers.get(event_type, [])
        if callback not in callbacks:
            return False
        callbacks.remove(callback)
        return True

    def emit(self, event_type: str, **kwargs) -> int:
        """Call every subscriber of event_type. Returns how many succeeded."""
        delivered = 0
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
                delivered += 1
            except Exception:
                logger.exception(f"Error in {event_type} callback {callback!r}")
        return delivered

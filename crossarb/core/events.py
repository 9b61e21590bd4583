"""Observable engine events."""

from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

from loguru import logger


class EngineEvent(Enum):
    """Events published by the engine."""
    OPPORTUNITY = "opportunity-detected"
    EXECUTION = "execution-attempted"
    PERFORMANCE = "performance-summary"
    STATE = "state-changed"


Listener = Callable[[Any], None]


class EventHub:
    """Fan-out of engine events to subscribed callbacks.

    A failing callback is logged and does not affect other subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[EngineEvent, List[Listener]] = defaultdict(list)

    def subscribe(self, event: EngineEvent, callback: Listener) -> None:
        """Subscribe to an event."""
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: EngineEvent, callback: Listener) -> None:
        """Unsubscribe from an event."""
        if callback in self._subscribers[event]:
            self._subscribers[event].remove(callback)

    def publish(self, event: EngineEvent, payload: Any) -> None:
        for callback in list(self._subscribers[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Error in {event.value} callback: {e}")

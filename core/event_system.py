from PySide6.QtCore import QObject
from typing import Dict, List, Callable, Optional
from dataclasses import dataclass
from collections import deque
from enum import Enum
import logging
import threading


class EventType(Enum):
    # Selection events
    SELECTION_CHANGED = "selection_changed"

    # Grid lifecycle
    GRID_BUSY = "grid_busy"  # A reload/add/delete started or finished
    ENTRY_ADDED = "entry_added"
    ENTRY_DELETED = "entry_deleted"

    # Status messages
    STATUS_MESSAGE = "status_message"


@dataclass
class EventData:
    event_type: EventType
    source: str  # Source component name
    timestamp: float


class StatusSection(Enum):
    COUNT   = "count"
    PROCESS = "process"


@dataclass
class StatusMessageEventData(EventData):
    message: str
    timeout: int = 0
    section: StatusSection = StatusSection.PROCESS


@dataclass
class SelectionChangedEventData(EventData):
    selected_key: Optional[str]


@dataclass
class GridBusyEventData(EventData):
    busy: bool
    operation: str  # "reload", "add" or "delete"


@dataclass
class EntryEventData(EventData):
    indexation_id: str
    user_id: str


class EventSystem(QObject):
    def __init__(self):
        super().__init__()
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._event_history: deque[EventData] = deque(maxlen=500)
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, callback: Callable[[EventData], None]):
        with self._lock:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = []
            self._subscribers[event_type].append(callback)
        logging.debug(f"Subscribed to {event_type.value}: {getattr(callback, '__name__', callback)}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[EventData], None]):
        with self._lock:
            if event_type in self._subscribers:
                try:
                    self._subscribers[event_type].remove(callback)
                    logging.debug(f"Unsubscribed from {event_type.value}: {getattr(callback, '__name__', callback)}")
                except ValueError:
                    logging.warning(f"Callback not found for {event_type.value}")

    def publish(self, event_data: EventData):
        with self._lock:
            event_type = event_data.event_type
            self._event_history.append(event_data)
            # Snapshot the subscriber list so callbacks can safely call subscribe/unsubscribe.
            callbacks = list(self._subscribers.get(event_type, []))

        for callback in callbacks:
            try:
                callback(event_data)
            except Exception as e:
                # why: isolate handler crashes so one broken subscriber can't block others
                logging.error(f"Error in event callback for {event_type.value}: {e}", exc_info=True)

        logging.debug("Published event: %s from %s", event_type.value, event_data.source)

    def get_event_history(self, event_type: Optional[EventType] = None) -> List[EventData]:
        with self._lock:
            history = list(self._event_history)
        if event_type:
            return [e for e in history if e.event_type == event_type]
        return history

    def clear_history(self):
        with self._lock:
            self._event_history.clear()

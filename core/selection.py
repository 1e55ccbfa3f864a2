import logging
import time
from typing import Optional

from .event_system import EventSystem, EventType, SelectionChangedEventData


class SelectionState:
    """Holds the key of the single selected grid row, or None."""

    def __init__(self):
        self.selected_key: Optional[str] = None

    @property
    def has_selection(self) -> bool:
        return self.selected_key is not None

    def set_selection(self, key: Optional[str]):
        self.selected_key = key


class SelectionTracker:
    """
    Two-state machine (NONE / SELECTED) over the grid's rows.

    The grid fires one selection-changed event of its own while it is being
    populated. ``begin_load()`` arms a flag so that event is swallowed instead
    of selecting whatever row the widget happened to focus.
    """

    def __init__(self, events: EventSystem, state: Optional[SelectionState] = None):
        self.events = events
        self.state = state or SelectionState()
        self._loading_flag = True

    @property
    def selected_key(self) -> Optional[str]:
        return self.state.selected_key

    @property
    def is_armed(self) -> bool:
        return self._loading_flag

    def begin_load(self):
        """Force NONE and ignore the next selection event."""
        self._loading_flag = True
        self._set(None)

    def clear(self):
        self._set(None)

    def on_selection_changed(self, key: Optional[str]) -> bool:
        """Feed a selection event from the grid. Returns True if it was applied."""
        if self._loading_flag:
            self._loading_flag = False
            logging.debug(f"Ignored load-time selection event for {key}")
            return False
        self._set(key)
        return True

    def forget(self, key: str):
        """Drop the selection if *key* is the row being removed."""
        if self.state.selected_key == key:
            self._set(None)

    def _set(self, key: Optional[str]):
        if self.state.selected_key == key:
            return
        self.state.set_selection(key)
        self.events.publish(SelectionChangedEventData(
            event_type=EventType.SELECTION_CHANGED,
            source="SelectionTracker",
            timestamp=time.time(),
            selected_key=key,
        ))
        logging.debug(f"Selection is now {key}")

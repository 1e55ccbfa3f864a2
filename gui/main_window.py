from PySide6.QtWidgets import QMainWindow
from PySide6.QtCore import Signal, QSettings
from PySide6.QtGui import QAction, QKeySequence
import logging

from .locker_view import LockerView
from .status_bar import CustomStatusBar
from core.event_system import EventType, EventData, StatusSection


class MainWindow(QMainWindow):
    # Events may be published from worker threads; these re-enter the UI thread.
    _status_received = Signal(object)
    _busy_received = Signal(object)
    _entry_received = Signal(object)

    def __init__(self, context):
        super().__init__()
        self.context = context
        self.config_manager = context.config_manager
        self.events = context.events

        self.locker_view = LockerView(context, self)
        self.setCentralWidget(self.locker_view)

        self.status_bar = CustomStatusBar(self.config_manager, self)
        self.setStatusBar(self.status_bar)

        self._setup_menu()

        self._status_received.connect(self._handle_status_message)
        self._busy_received.connect(self._handle_grid_busy)
        self._entry_received.connect(self._handle_entry_event)
        self.events.subscribe(EventType.STATUS_MESSAGE, self._on_status_event)
        self.events.subscribe(EventType.GRID_BUSY, self._on_busy_event)
        self.events.subscribe(EventType.ENTRY_ADDED, self._on_entry_event)
        self.events.subscribe(EventType.ENTRY_DELETED, self._on_entry_event)

        self.setWindowTitle("Dirt Locker")
        settings = QSettings("DirtLocker", "MainWindow")
        geometry = settings.value("geometry")
        if geometry:
            self.restoreGeometry(geometry)
        else:
            self.resize(1000, 700)

    def _setup_menu(self):
        file_menu = self.menuBar().addMenu("&File")

        self.reload_action = QAction("Reload entries", self)
        self.reload_action.setShortcut(QKeySequence("F5"))
        self.reload_action.triggered.connect(self.reload_entries)
        file_menu.addAction(self.reload_action)

        file_menu.addSeparator()
        quit_action = QAction("Quit", self)
        quit_action.setShortcut(QKeySequence(QKeySequence.StandardKey.Quit))
        quit_action.triggered.connect(self.close)
        file_menu.addAction(quit_action)

    def _on_status_event(self, event_data: EventData):
        self._status_received.emit(event_data)

    def _on_busy_event(self, event_data: EventData):
        self._busy_received.emit(event_data)

    def _on_entry_event(self, event_data: EventData):
        self._entry_received.emit(event_data)

    def reload_entries(self):
        self.locker_view.reload_entries()

    def _handle_status_message(self, event_data: EventData):
        if event_data.section == StatusSection.COUNT:
            self.status_bar.setCount(event_data.message)
        else:
            self.status_bar.setProcessMessage(event_data.message, event_data.timeout)

    def _handle_grid_busy(self, event_data: EventData):
        if event_data.operation == "reload":
            self.reload_action.setEnabled(not event_data.busy)

    def _handle_entry_event(self, event_data: EventData):
        verb = "Added" if event_data.event_type == EventType.ENTRY_ADDED else "Deleted"
        self.status_bar.setProcessMessage(f"{verb} {event_data.indexation_id}", 3000)

    def closeEvent(self, event):
        """Handles the window close event."""
        logging.info("GUI close requested.")
        self.events.unsubscribe(EventType.STATUS_MESSAGE, self._on_status_event)
        self.events.unsubscribe(EventType.GRID_BUSY, self._on_busy_event)
        self.events.unsubscribe(EventType.ENTRY_ADDED, self._on_entry_event)
        self.events.unsubscribe(EventType.ENTRY_DELETED, self._on_entry_event)
        self.locker_view.shutdown()

        settings = QSettings("DirtLocker", "MainWindow")
        settings.setValue("geometry", self.saveGeometry())
        super().closeEvent(event)

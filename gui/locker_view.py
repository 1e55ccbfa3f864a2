from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional
import logging
import time

from PySide6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QGridLayout, QLineEdit, QLabel, QPushButton,
    QTableWidget, QTableWidgetItem, QHeaderView, QAbstractItemView, QMessageBox,
    QApplication, QProgressBar, QGroupBox,
)
from PySide6.QtCore import Qt, Signal, QTimer, QEvent
from PySide6.QtGui import QColor, QPixmap, QPainter, QFont

from core.errors import EntryValidationError, ReloadInProgressError
from core.event_system import EventType, StatusMessageEventData, StatusSection
from core.filters import FilterSet
from core.grid_sync import GridSynchronizer, ReloadResult
from core.information import entries_label
from core.models import DisplayRow
from .entry_dialog import EntryDialog

COL_INDEXATION = 0
COL_USER = 1
COL_AVATAR = 2
COL_INFORMATION = 3
COL_CONTENT = 4
HEADERS = ["Indexation ID", "User ID", "Avatar", "Information", "Dirt"]

COPIED_TEXT = "Copied to Clipboard"
APPLY_TEXT = "Apply Filters"
LOADING_TEXT = "Loading..."


def _pixmap_from_png(data: Optional[bytes]) -> Optional[QPixmap]:
    if not data:
        return None
    pixmap = QPixmap()
    if not pixmap.loadFromData(data, "PNG"):
        return None
    return pixmap


def _text_pixmap(text: str, size: int, background: str = "#d0d0d0") -> QPixmap:
    """Square placeholder with centred text, used for missing images and copy feedback."""
    pixmap = QPixmap(size, size)
    pixmap.fill(QColor(background))
    painter = QPainter(pixmap)
    painter.setFont(QFont("Arial", max(8, size // 8)))
    painter.drawText(pixmap.rect(), Qt.AlignCenter, text)
    painter.end()
    return pixmap


class LockerView(QWidget):
    """The dirt grid with its lookup filters, add form and row actions."""

    # Worker thread -> UI thread bridges
    _reload_finished = Signal(object)
    _reload_failed = Signal(str)
    _add_finished = Signal(object)
    _add_failed = Signal(object)
    _delete_finished = Signal(str, object)
    _delete_failed = Signal(str)
    _information_ready = Signal(str, str)
    _details_ready = Signal(object)
    _selection_changed = Signal(object)

    def __init__(self, context, parent=None):
        super().__init__(parent)
        self.context = context
        self.config_manager = context.config_manager
        self.events = context.events
        self.synchronizer = GridSynchronizer(context)
        self.selection = self.synchronizer.selection

        self.row_height = int(self.config_manager.get("gui.row_height", 100))
        self.row_color = QColor(self.config_manager.get("gui.row_color", "white"))
        self.hover_color = QColor(self.config_manager.get("gui.hover_color", "lightgray"))
        self.select_color = QColor(self.config_manager.get("gui.select_color", "khaki"))
        self.copy_feedback_ms = int(self.config_manager.get("gui.copy_feedback_ms", 1000))

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="locker")
        self._rows: Dict[str, DisplayRow] = {}
        self._copying: set = set()  # (key, column) pairs showing copy feedback
        self._hovered_key: Optional[str] = None
        self._placeholder = _text_pixmap("?", self.row_height)
        self._copied_pixmap = _text_pixmap("Copied", self.row_height, background="#b5e7a0")
        self._dialogs: List[EntryDialog] = []
        self._reloading = False
        self._adding = False

        self._setup_ui()
        self._update_action_buttons(None)

        self._reload_finished.connect(self._on_reload_finished)
        self._reload_failed.connect(self._on_reload_failed)
        self._add_finished.connect(self._on_add_finished)
        self._add_failed.connect(self._on_add_failed)
        self._delete_finished.connect(self._on_delete_finished)
        self._delete_failed.connect(self._on_delete_failed)
        self._information_ready.connect(self._on_information_ready)
        self._details_ready.connect(self._on_details_ready)
        self._selection_changed.connect(self._update_action_buttons)
        self.events.subscribe(EventType.SELECTION_CHANGED, self._on_selection_event)

    # ------------------------------------------------------------------
    # UI construction
    # ------------------------------------------------------------------

    def _setup_ui(self):
        layout = QVBoxLayout(self)

        filters_box = QGroupBox("Lookup")
        filters_layout = QGridLayout(filters_box)
        self.index_lookup = QLineEdit()
        self.username_lookup = QLineEdit()
        self.user_id_lookup = QLineEdit()
        self.notes_lookup = QLineEdit()
        for column, (label, edit) in enumerate((
            ("Indexation ID", self.index_lookup),
            ("Username", self.username_lookup),
            ("User ID", self.user_id_lookup),
            ("Notes", self.notes_lookup),
        )):
            filters_layout.addWidget(QLabel(label), 0, column)
            filters_layout.addWidget(edit, 1, column)
            edit.returnPressed.connect(self.apply_filters)
        self.apply_button = QPushButton(APPLY_TEXT)
        self.apply_button.clicked.connect(self.apply_filters)
        filters_layout.addWidget(self.apply_button, 1, 4)
        layout.addWidget(filters_box)

        add_box = QGroupBox("Add dirt")
        add_layout = QGridLayout(add_box)
        self.user_id_input = QLineEdit()
        self.user_id_input.setPlaceholderText("Discord user ID")
        self.url_input = QLineEdit()
        self.url_input.setPlaceholderText("Attachment URL")
        self.notes_input = QLineEdit()
        self.notes_input.setPlaceholderText("Additional notes")
        self._field_inputs = {"user_id": self.user_id_input, "attachment_url": self.url_input, "notes": self.notes_input}
        self._field_errors: Dict[str, QLabel] = {}
        for column, (field, edit) in enumerate(self._field_inputs.items()):
            add_layout.addWidget(edit, 0, column)
            error_label = QLabel()
            error_label.setStyleSheet("color: #c0392b; font-size: 11px;")
            error_label.hide()
            add_layout.addWidget(error_label, 1, column)
            self._field_errors[field] = error_label

        self.add_button = QPushButton("Add")
        self.add_button.clicked.connect(self.add_entry)
        self.loading_indicator = QProgressBar()
        self.loading_indicator.setRange(0, 0)  # indeterminate
        self.loading_indicator.setFixedWidth(self.add_button.sizeHint().width() * 2)
        self.loading_indicator.hide()
        add_layout.addWidget(self.add_button, 0, 3)
        add_layout.addWidget(self.loading_indicator, 0, 3)
        layout.addWidget(add_box)

        self.table = QTableWidget(0, len(HEADERS))
        self.table.setHorizontalHeaderLabels(HEADERS)
        self.table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self.table.setSelectionMode(QAbstractItemView.NoSelection)
        self.table.setMouseTracking(True)
        self.table.verticalHeader().setDefaultSectionSize(self.row_height)
        self.table.verticalHeader().hide()
        header = self.table.horizontalHeader()
        header.setSectionResizeMode(COL_INFORMATION, QHeaderView.Stretch)
        for column in (COL_AVATAR, COL_CONTENT):
            header.setSectionResizeMode(column, QHeaderView.Fixed)
            self.table.setColumnWidth(column, self.row_height + 8)
        self.table.currentCellChanged.connect(self._on_current_cell_changed)
        self.table.cellClicked.connect(self._on_cell_clicked)
        self.table.cellEntered.connect(self._on_cell_entered)
        self.table.viewport().installEventFilter(self)
        layout.addWidget(self.table, 1)

        actions = QHBoxLayout()
        self.entries_label = QLabel(entries_label(0))
        actions.addWidget(self.entries_label)
        actions.addStretch()
        self.view_button = QPushButton("View entry")
        self.view_button.clicked.connect(self.view_selected)
        self.delete_button = QPushButton("Delete entry")
        self.delete_button.clicked.connect(self.delete_selected)
        actions.addWidget(self.view_button)
        actions.addWidget(self.delete_button)
        layout.addLayout(actions)

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def current_filters(self) -> FilterSet:
        return FilterSet(
            indexation_id=self.index_lookup.text(),
            username=self.username_lookup.text(),
            user_id=self.user_id_lookup.text(),
            notes=self.notes_lookup.text(),
        )

    def apply_filters(self):
        self.reload_entries()

    def reload_entries(self):
        """Clear the grid and load every entry matching the lookup fields."""
        try:
            self.synchronizer.begin_reload()
        except ReloadInProgressError:
            logging.info("Reload requested while one is running; ignoring")
            return

        self._set_reload_state(True)
        self._clear_rows()
        self._publish_status("Loading entries...")

        future = self._executor.submit(self.synchronizer.fetch_rows, self.current_filters())
        future.add_done_callback(self._reload_done)

    def _reload_done(self, future: Future):
        try:
            self._reload_finished.emit(future.result())
        except Exception as e:  # why: surface any worker failure on the UI thread
            logging.error(f"Reload failed: {e}", exc_info=True)
            self._reload_failed.emit(str(e))

    def _on_reload_finished(self, result: ReloadResult):
        # Replace in one pass so no partially hydrated grid is ever shown.
        self.table.setUpdatesEnabled(False)
        self.table.blockSignals(True)
        try:
            self.table.setRowCount(0)
            for row in result.rows:
                self._append_row(row)
        finally:
            self.table.blockSignals(False)
            self.table.setUpdatesEnabled(True)
        self._settle_selection()

        self._update_count()
        if result.failed:
            self._publish_status(f"{len(result.failed)} entries could not be fully loaded", timeout=5000)
        else:
            self._publish_status("Entries loaded", timeout=2000)
        self._set_reload_state(False)

    def _on_reload_failed(self, message: str):
        self._settle_selection()
        self._set_reload_state(False)
        self._update_count()
        QMessageBox.critical(self, "Reload failed", message)

    def _settle_selection(self):
        # The grid's own load-time selection event is blocked while rows are
        # placed, so the armed flag is consumed here on every reload outcome.
        if self.selection.is_armed:
            self.selection.on_selection_changed(None)

    def _set_reload_state(self, loading: bool):
        self._reloading = loading
        self.apply_button.setEnabled(not loading)
        self.apply_button.setText(LOADING_TEXT if loading else APPLY_TEXT)
        self._refresh_add_controls()

    def _clear_rows(self):
        self.table.setRowCount(0)
        self._rows.clear()
        self._copying.clear()
        self._hovered_key = None

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _append_row(self, row: DisplayRow):
        self._insert_row(self.table.rowCount(), row)

    def _insert_row(self, index: int, row: DisplayRow):
        self.table.insertRow(index)
        self._rows[row.indexation_id] = row

        self.table.setItem(index, COL_INDEXATION, QTableWidgetItem(row.indexation_id))
        self.table.setItem(index, COL_USER, QTableWidgetItem(row.user_id))

        avatar_item = QTableWidgetItem()
        avatar_item.setData(Qt.DecorationRole, _pixmap_from_png(row.avatar) or self._placeholder)
        self.table.setItem(index, COL_AVATAR, avatar_item)

        info_item = QTableWidgetItem(row.information)
        info_item.setToolTip("Click to copy")
        self.table.setItem(index, COL_INFORMATION, info_item)

        content_item = QTableWidgetItem()
        content_item.setData(Qt.DecorationRole, _pixmap_from_png(row.content) or self._placeholder)
        content_item.setToolTip("Click to copy the picture")
        self.table.setItem(index, COL_CONTENT, content_item)

        if row.error:
            for column in (COL_AVATAR, COL_CONTENT):
                self.table.item(index, column).setToolTip(row.error)
        self._paint_row(index, self.row_color)

    def _row_for_key(self, key: Optional[str]) -> int:
        if key is None:
            return -1
        for index in range(self.table.rowCount()):
            item = self.table.item(index, COL_INDEXATION)
            if item is not None and item.text() == key:
                return index
        return -1

    def _key_for_row(self, index: int) -> Optional[str]:
        item = self.table.item(index, COL_INDEXATION) if index >= 0 else None
        return item.text() if item is not None else None

    def _paint_row(self, index: int, color: QColor):
        for column in range(self.table.columnCount()):
            item = self.table.item(index, column)
            if item is not None:
                item.setBackground(color)

    def _update_count(self):
        text = entries_label(self.table.rowCount())
        self.entries_label.setText(text)
        self._publish_status(text, section=StatusSection.COUNT)

    def _publish_status(self, message: str, timeout: int = 0, section: StatusSection = StatusSection.PROCESS):
        self.events.publish(StatusMessageEventData(
            event_type=EventType.STATUS_MESSAGE,
            source="locker_view",
            timestamp=time.time(),
            message=message,
            timeout=timeout,
            section=section,
        ))

    # ------------------------------------------------------------------
    # Selection and hover
    # ------------------------------------------------------------------

    def _on_current_cell_changed(self, row: int, column: int, previous_row: int, previous_column: int):
        if row < 0:
            return
        previous_key = self.selection.selected_key
        if not self.selection.on_selection_changed(self._key_for_row(row)):
            return
        previous_index = self._row_for_key(previous_key)
        if previous_index >= 0:
            self._paint_row(previous_index, self.row_color)
        self._paint_row(row, self.select_color)

    def _on_cell_entered(self, row: int, column: int):
        key = self._key_for_row(row)
        if key == self._hovered_key:
            return
        self._restore_hovered()
        self._hovered_key = key
        if key is not None and key != self.selection.selected_key:
            self._paint_row(row, self.hover_color)

    def _restore_hovered(self):
        if self._hovered_key is None or self._hovered_key == self.selection.selected_key:
            self._hovered_key = None
            return
        index = self._row_for_key(self._hovered_key)
        if index >= 0:
            self._paint_row(index, self.row_color)
        self._hovered_key = None

    def eventFilter(self, obj, event):
        if obj is self.table.viewport() and event.type() == QEvent.Leave:
            self._restore_hovered()
        return super().eventFilter(obj, event)

    # ------------------------------------------------------------------
    # Click to copy
    # ------------------------------------------------------------------

    def _on_cell_clicked(self, row: int, column: int):
        key = self._key_for_row(row)
        if key is None or (key, column) in self._copying:
            return
        if column == COL_CONTENT:
            self._copy_picture(key)
        elif column == COL_INFORMATION:
            self._copying.add((key, column))
            future = self._executor.submit(self.synchronizer.pasteable_information, key)
            future.add_done_callback(lambda f, k=key: self._information_done(k, f))

    def _information_done(self, key: str, future: Future):
        try:
            text = future.result()
        except Exception as e:  # why: surface any worker failure on the UI thread
            logging.error(f"Could not build information for {key}: {e}", exc_info=True)
            text = None
        self._information_ready.emit(key, text or "")

    def _on_information_ready(self, key: str, text: str):
        index = self._row_for_key(key)
        if not text or index < 0:
            self._copying.discard((key, COL_INFORMATION))
            return
        QApplication.clipboard().setText(text)
        item = self.table.item(index, COL_INFORMATION)
        original = item.text()
        item.setText(COPIED_TEXT)
        QTimer.singleShot(self.copy_feedback_ms, lambda: self._restore_information(key, original))

    def _restore_information(self, key: str, original: str):
        self._copying.discard((key, COL_INFORMATION))
        index = self._row_for_key(key)
        if index >= 0:
            self.table.item(index, COL_INFORMATION).setText(original)

    def _copy_picture(self, key: str):
        row = self._rows.get(key)
        index = self._row_for_key(key)
        if row is None or index < 0:
            return
        pixmap = QPixmap(row.content_path) if row.content_path else QPixmap()
        if pixmap.isNull():
            pixmap = _pixmap_from_png(row.content)
        if pixmap is None or pixmap.isNull():
            self._publish_status(f"No picture to copy for {key}", timeout=3000)
            return
        QApplication.clipboard().setPixmap(pixmap)
        self._copying.add((key, COL_CONTENT))
        self.table.item(index, COL_CONTENT).setData(Qt.DecorationRole, self._copied_pixmap)
        QTimer.singleShot(self.copy_feedback_ms, lambda: self._restore_picture(key))

    def _restore_picture(self, key: str):
        self._copying.discard((key, COL_CONTENT))
        index = self._row_for_key(key)
        row = self._rows.get(key)
        if index >= 0 and row is not None:
            self.table.item(index, COL_CONTENT).setData(
                Qt.DecorationRole, _pixmap_from_png(row.content) or self._placeholder)

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add_entry(self):
        if self._adding:
            return
        self._clear_field_errors()
        self._adding = True
        self._refresh_add_controls()
        future = self._executor.submit(
            self.synchronizer.add_entry,
            self.user_id_input.text(),
            self.url_input.text(),
            self.notes_input.text(),
        )
        future.add_done_callback(self._add_done)

    def _add_done(self, future: Future):
        try:
            self._add_finished.emit(future.result())
        except Exception as e:  # why: validation and fetch errors are both reported on the UI thread
            self._add_failed.emit(e)

    def _on_add_finished(self, row: DisplayRow):
        self._insert_row(0, row)
        for edit in self._field_inputs.values():
            edit.clear()
        self._update_count()
        self._adding = False
        self._refresh_add_controls()

    def _on_add_failed(self, error: Exception):
        self._adding = False
        self._refresh_add_controls()
        if isinstance(error, EntryValidationError):
            self._set_field_error(error.field, error.message)
            return
        logging.error(f"Adding entry failed: {error}", exc_info=error)
        QMessageBox.warning(self, "Could not add entry", str(error))

    def _refresh_add_controls(self):
        """Show the loading indicator in place of Add while an add or a reload runs."""
        busy = self._adding or self._reloading
        self.loading_indicator.setVisible(busy)
        self.add_button.setVisible(not busy)

    def _clear_field_errors(self):
        for field, label in self._field_errors.items():
            label.clear()
            label.hide()
            self._field_inputs[field].setStyleSheet("")

    def _set_field_error(self, field: str, message: str):
        label = self._field_errors.get(field)
        if label is None:
            QMessageBox.warning(self, "Could not add entry", message)
            return
        label.setText(message)
        label.show()
        self._field_inputs[field].setStyleSheet("border: 1px solid #c0392b;")

    # ------------------------------------------------------------------
    # View / delete
    # ------------------------------------------------------------------

    def view_selected(self):
        key = self.selection.selected_key
        if key is None:
            return
        future = self._executor.submit(self.synchronizer.entry_details, key)
        future.add_done_callback(self._details_done)

    def _details_done(self, future: Future):
        try:
            details = future.result()
        except Exception as e:  # why: surface any worker failure on the UI thread
            logging.error(f"Could not load entry details: {e}", exc_info=True)
            return
        if details is not None:
            self._details_ready.emit(details)

    def _on_details_ready(self, details):
        dialog = EntryDialog(details, self)
        dialog.finished.connect(lambda _result, d=dialog: self._dialogs.remove(d))
        self._dialogs.append(dialog)
        dialog.show()

    def delete_selected(self):
        key = self.selection.selected_key
        if key is None:
            return
        answer = QMessageBox.question(
            self, "Confirm", "Are you sure you want to delete this entry?",
            QMessageBox.Yes | QMessageBox.No, QMessageBox.No,
        )
        confirmed = answer == QMessageBox.Yes
        future = self._executor.submit(self.synchronizer.delete_entry, key, lambda _key: confirmed)
        future.add_done_callback(lambda f, k=key: self._delete_done(k, f))

    def _delete_done(self, key: str, future: Future):
        try:
            self._delete_finished.emit(key, future.result())
        except Exception as e:  # why: surface any worker failure on the UI thread
            logging.error(f"Deleting {key} failed: {e}", exc_info=True)
            self._delete_failed.emit(str(e))

    def _on_delete_finished(self, key: str, deleted):
        if deleted is None:
            return
        self.selection.forget(key)
        index = self._row_for_key(key)
        if index >= 0:
            self.table.blockSignals(True)
            self.table.removeRow(index)
            self.table.setCurrentCell(-1, -1)
            self.table.blockSignals(False)
        self._rows.pop(key, None)
        if self._hovered_key == key:
            self._hovered_key = None
        self._update_count()

    def _on_delete_failed(self, message: str):
        QMessageBox.critical(self, "Delete failed", message)

    def _on_selection_event(self, event_data):
        self._selection_changed.emit(event_data.selected_key)

    def _update_action_buttons(self, selected_key: Optional[str]):
        has_selection = selected_key is not None
        self.view_button.setEnabled(has_selection)
        self.delete_button.setEnabled(has_selection)

    def shutdown(self):
        self.events.unsubscribe(EventType.SELECTION_CHANGED, self._on_selection_event)
        for dialog in list(self._dialogs):
            dialog.close()
        self._executor.shutdown(wait=False, cancel_futures=True)

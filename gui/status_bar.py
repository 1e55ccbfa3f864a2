from PySide6.QtWidgets import QStatusBar, QLabel, QWidget, QHBoxLayout
from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QFont, QFontMetrics
import logging


class CustomStatusBar(QStatusBar):
    """2-section status bar: entry count (left), process message (right)."""

    def __init__(self, config_manager=None, parent=None):
        super().__init__(parent)
        self.config_manager = config_manager

        self._raw_count: str = ""
        self._raw_process: str = ""

        self._process_timer = QTimer(self)
        self._process_timer.setSingleShot(True)
        self._process_timer.timeout.connect(self._clear_process)

        self._build_layout()
        self._apply_font_settings()

    def _build_layout(self):
        container = QWidget(self)
        layout = QHBoxLayout(container)
        layout.setContentsMargins(4, 0, 4, 0)
        layout.setSpacing(6)

        self._count_label = QLabel()
        self._count_label.setAlignment(Qt.AlignLeft | Qt.AlignVCenter)
        layout.addWidget(self._count_label, 2)

        self._process_label = QLabel()
        self._process_label.setAlignment(Qt.AlignRight | Qt.AlignVCenter)
        layout.addWidget(self._process_label, 3)

        self.addWidget(container, 1)

    def _apply_font_settings(self):
        try:
            if self.config_manager:
                font_family = self.config_manager.get("gui.statusbar_font", "Arial")
                font_size = self.config_manager.get("gui.statusbar_font_size", 10)
            else:
                font_family = "Arial"
                font_size = 10
            font = QFont(font_family, font_size)
            for label in (self._count_label, self._process_label):
                label.setFont(font)
        except Exception as e:  # why: config_manager is user-supplied; malformed config must not crash the status bar at startup
            logging.warning(f"Could not apply status bar font settings: {e}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def setCount(self, text: str):
        self._raw_count = text
        self._refresh_elision()

    def setProcessMessage(self, message: str, timeout: int = 0):
        self._process_timer.stop()
        self._raw_process = message
        self._refresh_elision()
        if timeout > 0:
            self._process_timer.start(timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _clear_process(self):
        self._raw_process = ""
        self._refresh_elision()

    def _refresh_elision(self):
        self._count_label.setText(self._raw_count)

        fm_pr = QFontMetrics(self._process_label.font())
        available_pr = self._process_label.width()
        if available_pr > 0:
            elided_pr = fm_pr.elidedText(self._raw_process, Qt.ElideRight, available_pr)
        else:
            elided_pr = self._raw_process
        self._process_label.setText(elided_pr)
        self._process_label.setToolTip(self._raw_process)

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._refresh_elision()

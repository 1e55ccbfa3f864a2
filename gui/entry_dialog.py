from PySide6.QtWidgets import QDialog, QVBoxLayout, QHBoxLayout, QLabel, QScrollArea, QFormLayout, QPushButton
from PySide6.QtCore import Qt
from PySide6.QtGui import QPixmap


def _format_size(size) -> str:
    if size is None:
        return "Unknown"
    size = float(size)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


class EntryDialog(QDialog):
    """Read-only view of one dirt entry with its full-size picture."""

    AVATAR_SIZE = 96

    def __init__(self, details, parent=None):
        super().__init__(parent)
        self.details = details
        self.setWindowTitle(f"Entry {details.record.indexation_id}")
        self.setAttribute(Qt.WA_DeleteOnClose)
        self.resize(720, 640)
        self._setup_ui()

    def _setup_ui(self):
        details = self.details
        layout = QVBoxLayout(self)

        header = QHBoxLayout()
        avatar_label = QLabel()
        avatar = QPixmap(details.avatar_path) if details.avatar_path else QPixmap()
        if avatar.isNull():
            avatar_label.setText("No avatar")
        else:
            avatar_label.setPixmap(avatar.scaled(
                self.AVATAR_SIZE, self.AVATAR_SIZE, Qt.KeepAspectRatio, Qt.SmoothTransformation))
        avatar_label.setFixedSize(self.AVATAR_SIZE, self.AVATAR_SIZE)
        avatar_label.setAlignment(Qt.AlignCenter)
        header.addWidget(avatar_label)

        info_label = QLabel(details.information)
        info_label.setTextInteractionFlags(Qt.TextSelectableByMouse)
        info_label.setWordWrap(True)
        header.addWidget(info_label, 1)
        layout.addLayout(header)

        form = QFormLayout()
        attachment = details.attachment
        url_label = QLabel(attachment.attachment_url if attachment else "Unknown")
        url_label.setTextInteractionFlags(Qt.TextSelectableByMouse)
        url_label.setWordWrap(True)
        form.addRow("Attachment URL:", url_label)
        form.addRow("Content type:", QLabel((attachment.content_type if attachment else None) or "Unknown"))
        form.addRow("Size:", QLabel(_format_size(attachment.size if attachment else None)))
        layout.addLayout(form)

        content_label = QLabel()
        content_label.setAlignment(Qt.AlignCenter)
        content = QPixmap(details.content_path) if details.content_path else QPixmap()
        if content.isNull():
            content_label.setText("Picture unavailable")
        else:
            content_label.setPixmap(content)
        scroll = QScrollArea()
        scroll.setWidget(content_label)
        scroll.setWidgetResizable(True)
        layout.addWidget(scroll, 1)

        close_button = QPushButton("Close")
        close_button.clicked.connect(self.close)
        layout.addWidget(close_button, 0, Qt.AlignRight)

# core/models.py
"""Qt-free records shared by the database, the hydrator and the GUI."""
import sqlite3
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError, field_validator

from core.errors import EntryValidationError

_MAX_USER_ID = 2 ** 64  # Discord snowflakes are unsigned 64-bit


@dataclass(frozen=True)
class DirtRecord:
    indexation_id: str
    user_id: str
    attachment_id: int
    username: str
    notes: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DirtRecord":
        return cls(
            indexation_id=row["indexation_id"],
            user_id=row["user_id"],
            attachment_id=int(row["attachment_id"]),
            username=row["username"] or "",
            notes=row["notes"] or "",
        )


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    username: str
    total_dirt_count: int


@dataclass(frozen=True)
class AttachmentRecord:
    attachment_id: int
    content_type: str
    attachment_url: str
    size: int


@dataclass(frozen=True)
class DisplayRow:
    """A DirtRecord resolved for display. Images are PNG thumbnails."""
    indexation_id: str
    user_id: str
    information: str
    avatar: Optional[bytes] = None
    content: Optional[bytes] = None
    content_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.error is None


class NewEntry(BaseModel):
    """Add-form input. Fields are validated in declaration order."""
    user_id: str
    attachment_url: str
    notes: str = ""

    @field_validator("user_id")
    @classmethod
    def _numeric_user_id(cls, value: str) -> str:
        value = value.strip()
        if not (value.isascii() and value.isdigit()) or int(value) >= _MAX_USER_ID:
            raise ValueError("Wrongly formatted UUID (Numbers only!)")
        return value

    @field_validator("attachment_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Invalid URL")
        return value

    @field_validator("notes")
    @classmethod
    def _strip_notes(cls, value: str) -> str:
        return value.strip()

    @classmethod
    def parse_form(cls, user_id: str, attachment_url: str, notes: str = "") -> "NewEntry":
        """Validate raw form text, raising EntryValidationError for the first bad field."""
        try:
            return cls(user_id=user_id, attachment_url=attachment_url, notes=notes)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = str(first["loc"][0]) if first.get("loc") else "form"
            cause = first.get("ctx", {}).get("error")
            raise EntryValidationError(field, str(cause) if cause else first["msg"]) from None

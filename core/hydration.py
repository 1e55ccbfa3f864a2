# core/hydration.py
"""Resolves one Dirt record into a display-ready row."""
import logging
import sqlite3
from typing import List, Optional, Tuple

from core.database import LockerDatabase
from core.errors import StorageError
from core.information import information_string
from core.models import DirtRecord, DisplayRow, UserRecord

logger = logging.getLogger(__name__)

_FETCH_ERRORS = (StorageError, sqlite3.Error, OSError)


class RowHydrator:
    """
    Builds a DisplayRow from a DirtRecord: the information string, the
    content thumbnail and the avatar thumbnail.

    Every call opens and closes its own database connection so rows can be
    hydrated from many threads at once. Fetch failures degrade the row (the
    image is left out and ``error`` is set) instead of raising.
    """

    def __init__(self, context):
        self.context = context
        self.storage = context.storage

    def hydrate(self, record: DirtRecord) -> DisplayRow:
        errors: List[str] = []
        try:
            with self.context.open_database() as db:
                user = self._resolve_user(db, record, errors)
                content, content_path = self._resolve_content(db, record, errors)
                avatar = self._resolve_avatar(db, record, errors)
        except sqlite3.Error as e:
            logger.warning(f"Could not open database to hydrate {record.indexation_id}: {e}")
            return failed_row(record, f"database: {e}")

        if errors:
            logger.warning(f"Row {record.indexation_id} hydrated with errors: {'; '.join(errors)}")
        return DisplayRow(
            indexation_id=record.indexation_id,
            user_id=record.user_id,
            information=information_string(record, user),
            avatar=avatar,
            content=content,
            content_path=content_path,
            error="; ".join(errors) or None,
        )

    def _resolve_user(self, db: LockerDatabase, record: DirtRecord, errors: List[str]) -> Optional[UserRecord]:
        try:
            return db.get_user(record.user_id)
        except sqlite3.Error as e:
            errors.append(f"user: {e}")
            return None

    def _resolve_content(self, db: LockerDatabase, record: DirtRecord,
                         errors: List[str]) -> Tuple[Optional[bytes], Optional[str]]:
        try:
            path = self.storage.get_dirt_picture(db, record.attachment_id)
            return self.storage.thumbnail(path), path
        except _FETCH_ERRORS as e:
            errors.append(f"content: {e}")
            return None, None

    def _resolve_avatar(self, db: LockerDatabase, record: DirtRecord, errors: List[str]) -> Optional[bytes]:
        try:
            path = self.storage.get_avatar(db, record.user_id)
            return self.storage.thumbnail(path)
        except _FETCH_ERRORS as e:
            errors.append(f"avatar: {e}")
            return None


def failed_row(record: DirtRecord, error: str) -> DisplayRow:
    """A row with no images, for records whose hydration blew up entirely."""
    return DisplayRow(
        indexation_id=record.indexation_id,
        user_id=record.user_id,
        information=information_string(record, None),
        error=error,
    )

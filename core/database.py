import sqlite3
import os
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import List, Optional

from core.errors import EntryValidationError
from core.filters import FilterSet
from core.models import AttachmentRecord, DirtRecord, NewEntry, UserRecord

logger = logging.getLogger(__name__)

UNKNOWN_USERNAME = "Unknown"


@dataclass(frozen=True)
class DeletedEntry:
    """What a delete removed, so the caller can clean the disk cache."""
    indexation_id: str
    user_id: str
    attachment_id: int
    user_removed: bool


class LockerDatabase:
    """
    sqlite store for the locker: users, dirt entries, attachments and the
    image blobs backing the disk cache.

    One instance wraps one connection. Background work opens its own
    instance and closes it when done; instances are context managers.
    """

    def __init__(self, db_path: str, initialize: bool = True):
        self.db_path = db_path
        self._lock = Lock()

        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys=ON;")

        if initialize:
            self._init_database()

    def __enter__(self) -> "LockerDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _init_database(self):
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL;")

                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS DiscordUser (
                        user_id TEXT PRIMARY KEY,
                        username TEXT NOT NULL,
                        total_dirt_count INTEGER NOT NULL DEFAULT 0,
                        created_at REAL NOT NULL
                    )
                ''')
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS Attachment (
                        attachment_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        content_type TEXT,
                        attachment_url TEXT UNIQUE NOT NULL,
                        size INTEGER
                    )
                ''')
                # Deferred keys let a delete remove the attachment before the
                # dirt row that references it inside one transaction.
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS Dirt (
                        indexation_id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL
                            REFERENCES DiscordUser(user_id) DEFERRABLE INITIALLY DEFERRED,
                        attachment_id INTEGER NOT NULL UNIQUE
                            REFERENCES Attachment(attachment_id) DEFERRABLE INITIALLY DEFERRED,
                        username TEXT,
                        notes TEXT,
                        added_at REAL NOT NULL
                    )
                ''')
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS AttachmentStorage (
                        content_id INTEGER PRIMARY KEY,
                        data BLOB NOT NULL,
                        updated_at REAL NOT NULL
                    )
                ''')
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS AvatarStorage (
                        content_id TEXT PRIMARY KEY,
                        data BLOB NOT NULL,
                        updated_at REAL NOT NULL
                    )
                ''')
                cursor.execute('CREATE INDEX IF NOT EXISTS idx_dirt_user ON Dirt(user_id)')
                self.conn.commit()

                logger.info(f"Locker database initialized: {self.db_path}")

            except sqlite3.Error as e:
                logger.error(f"Error initializing locker database: {e}")
                raise

    # ── Reads ────────────────────────────────────────────────────

    def select_dirt(self, filters: Optional[FilterSet] = None) -> List[DirtRecord]:
        """Dirt entries matching *filters*, oldest first."""
        where, params = (filters or FilterSet()).to_sql()
        with self._lock:
            rows = self.conn.execute(
                f"SELECT indexation_id, user_id, attachment_id, username, notes FROM Dirt {where} ORDER BY rowid",
                params,
            ).fetchall()
        return [DirtRecord.from_row(row) for row in rows]

    def get_dirt(self, indexation_id: str) -> Optional[DirtRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT indexation_id, user_id, attachment_id, username, notes FROM Dirt WHERE indexation_id = ?",
                (indexation_id,),
            ).fetchone()
        return DirtRecord.from_row(row) if row else None

    def count_dirt(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is None:
                row = self.conn.execute("SELECT COUNT(*) FROM Dirt").fetchone()
            else:
                row = self.conn.execute("SELECT COUNT(*) FROM Dirt WHERE user_id = ?", (user_id,)).fetchone()
        return row[0]

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT user_id, username, total_dirt_count FROM DiscordUser WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return UserRecord(row["user_id"], row["username"], row["total_dirt_count"])

    def get_attachment(self, attachment_id: int) -> Optional[AttachmentRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT attachment_id, content_type, attachment_url, size FROM Attachment WHERE attachment_id = ?",
                (attachment_id,),
            ).fetchone()
        if not row:
            return None
        return AttachmentRecord(row["attachment_id"], row["content_type"] or "", row["attachment_url"], row["size"] or 0)

    def attachment_url_exists(self, attachment_url: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM Attachment WHERE attachment_url = ? LIMIT 1", (attachment_url,)
            ).fetchone()
        return row is not None

    def get_attachment_blob(self, attachment_id: int) -> Optional[bytes]:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM AttachmentStorage WHERE content_id = ?", (attachment_id,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def get_avatar_blob(self, user_id: str) -> Optional[bytes]:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM AvatarStorage WHERE content_id = ?", (user_id,)
            ).fetchone()
        return bytes(row[0]) if row else None

    # ── Writes ───────────────────────────────────────────────────

    def store_attachment_blob(self, attachment_id: int, data: bytes) -> None:
        with self._lock:
            with self.conn:
                self._upsert_blob("AttachmentStorage", attachment_id, data)

    def store_avatar_blob(self, user_id: str, data: bytes) -> None:
        with self._lock:
            with self.conn:
                self._upsert_blob("AvatarStorage", user_id, data)

    def _upsert_blob(self, table: str, content_id, data: bytes) -> None:
        self.conn.execute(
            f"""
            INSERT INTO {table}(content_id, data, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(content_id) DO UPDATE SET data=excluded.data, updated_at=excluded.updated_at
            """,
            (content_id, sqlite3.Binary(data), time.time()),
        )

    def _next_indexation_id(self, user_id: str) -> str:
        rows = self.conn.execute("SELECT indexation_id FROM Dirt WHERE user_id = ?", (user_id,)).fetchall()
        highest = 0
        for (indexation_id,) in rows:
            prefix, _, seq = indexation_id.rpartition("-")
            if prefix == user_id and seq.isdigit():
                highest = max(highest, int(seq))
        return f"{user_id}-{highest + 1}"

    def add_entry(self, entry: NewEntry, username: str, content_type: str, size: int,
                  content_data: bytes) -> DirtRecord:
        """
        Write a new dirt entry and everything it owns in one transaction:
        user upsert, attachment, attachment blob, dirt row, counter increment.
        """
        now = time.time()
        username = username or UNKNOWN_USERNAME
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.cursor()
                    cursor.execute(
                        """
                        INSERT INTO DiscordUser(user_id, username, total_dirt_count, created_at)
                        VALUES (?, ?, 0, ?)
                        ON CONFLICT(user_id) DO UPDATE SET username=excluded.username
                        """,
                        (entry.user_id, username, now),
                    )
                    cursor.execute(
                        "INSERT INTO Attachment(content_type, attachment_url, size) VALUES (?, ?, ?)",
                        (content_type, entry.attachment_url, size),
                    )
                    attachment_id = cursor.lastrowid
                    self._upsert_blob("AttachmentStorage", attachment_id, content_data)

                    indexation_id = self._next_indexation_id(entry.user_id)
                    cursor.execute(
                        """
                        INSERT INTO Dirt(indexation_id, user_id, attachment_id, username, notes, added_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (indexation_id, entry.user_id, attachment_id, username, entry.notes, now),
                    )
                    cursor.execute(
                        "UPDATE DiscordUser SET total_dirt_count = total_dirt_count + 1 WHERE user_id = ?",
                        (entry.user_id,),
                    )
            except sqlite3.IntegrityError as e:
                if "attachment_url" in str(e):
                    raise EntryValidationError("attachment_url", "This attachment is already registered.") from e
                raise

        logger.info(f"Added dirt entry {indexation_id} for user {entry.user_id} (attachment {attachment_id})")
        return DirtRecord(indexation_id, entry.user_id, attachment_id, username, entry.notes)

    def delete_entry(self, indexation_id: str) -> Optional[DeletedEntry]:
        """
        Remove a dirt entry, its attachment and stored image in one
        transaction. The owning user and avatar go too when this was the
        user's last entry. Returns None when the entry does not exist.
        """
        with self._lock:
            with self.conn:
                cursor = self.conn.cursor()
                row = cursor.execute(
                    "SELECT user_id, attachment_id FROM Dirt WHERE indexation_id = ?", (indexation_id,)
                ).fetchone()
                if row is None:
                    return None
                user_id, attachment_id = row["user_id"], int(row["attachment_id"])

                cursor.execute("DELETE FROM AttachmentStorage WHERE content_id = ?", (attachment_id,))
                cursor.execute("DELETE FROM Attachment WHERE attachment_id = ?", (attachment_id,))
                cursor.execute("DELETE FROM Dirt WHERE indexation_id = ?", (indexation_id,))
                cursor.execute(
                    "UPDATE DiscordUser SET total_dirt_count = MAX(total_dirt_count - 1, 0) WHERE user_id = ?",
                    (user_id,),
                )

                remaining = cursor.execute("SELECT COUNT(*) FROM Dirt WHERE user_id = ?", (user_id,)).fetchone()[0]
                user_removed = remaining == 0
                if user_removed:
                    cursor.execute("DELETE FROM AvatarStorage WHERE content_id = ?", (user_id,))
                    cursor.execute("DELETE FROM DiscordUser WHERE user_id = ?", (user_id,))

        logger.info(
            f"Deleted dirt entry {indexation_id} (attachment {attachment_id}); "
            f"user {user_id} {'removed' if user_removed else f'has {remaining} left'}"
        )
        return DeletedEntry(indexation_id, user_id, attachment_id, user_removed)

    def close(self):
        """Closes the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.debug(f"Locker database connection closed: {self.db_path}")

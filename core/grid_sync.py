# core/grid_sync.py
"""Reload, add and delete for the locker grid.

Qt-free. The GUI calls ``begin_reload()`` on its own thread and the blocking
parts (``fetch_rows``, ``add_entry``, ``delete_entry``) from a worker thread.
"""
import logging
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional

from core.database import DeletedEntry
from core.errors import DiscordUserNotFound, EntryValidationError, ReloadInProgressError, StorageError
from core.event_system import EntryEventData, EventType, GridBusyEventData
from core.filters import FilterSet
from core.hydration import RowHydrator, failed_row
from core.information import entries_label, information_string
from core.models import AttachmentRecord, DirtRecord, DisplayRow, NewEntry, UserRecord
from core.selection import SelectionTracker
from core.storage import decode_image

logger = logging.getLogger(__name__)

DUPLICATE_ATTACHMENT = "This attachment is already registered."
UNKNOWN_USER = "This user does not exist."
NOT_A_PICTURE = "Invalid URL"


@dataclass(frozen=True)
class ReloadResult:
    rows: List[DisplayRow]

    @property
    def count(self) -> int:
        return len(self.rows)

    @property
    def label(self) -> str:
        return entries_label(self.count)

    @property
    def failed(self) -> List[DisplayRow]:
        return [row for row in self.rows if not row.is_complete]


@dataclass(frozen=True)
class EntryDetails:
    """Everything the entry viewer shows for one dirt entry."""
    record: DirtRecord
    user: Optional[UserRecord]
    attachment: Optional[AttachmentRecord]
    information: str
    content_path: Optional[str]
    avatar_path: Optional[str]


class GridSynchronizer:
    def __init__(self, context, hydrator: Optional[RowHydrator] = None,
                 selection: Optional[SelectionTracker] = None):
        self.context = context
        self.events = context.events
        self.hydrator = hydrator or RowHydrator(context)
        self.selection = selection or SelectionTracker(context.events)
        self._reload_guard = threading.Lock()

    @property
    def reload_in_progress(self) -> bool:
        return self._reload_guard.locked()

    # ── Reload ───────────────────────────────────────────────────

    def begin_reload(self) -> None:
        """Claim the reload slot and reset the selection. Call on the UI thread."""
        if not self._reload_guard.acquire(blocking=False):
            raise ReloadInProgressError("A reload is already running")
        self.selection.begin_load()
        self._publish_busy(True, "reload")

    def fetch_rows(self, filters: FilterSet) -> ReloadResult:
        """
        Fetch matching records newest first, hydrate them concurrently and
        return the complete row list. Must follow ``begin_reload()``.
        """
        if not self._reload_guard.locked():
            raise RuntimeError("fetch_rows() called without begin_reload()")
        started = time.time()
        try:
            with self.context.open_database() as db:
                records = db.select_dirt(filters)
            if filters.is_empty:
                logger.debug("Reloading without lookup filters")
            records.reverse()
            rows = self.hydrate_all(records)
            result = ReloadResult(rows)
            logger.info(
                f"Reloaded {result.count} entries ({len(result.failed)} degraded) "
                f"in {time.time() - started:.2f}s"
            )
            return result
        finally:
            self._reload_guard.release()
            self._publish_busy(False, "reload")

    def reload(self, filters: FilterSet) -> ReloadResult:
        """Both reload phases on the calling thread."""
        self.begin_reload()
        return self.fetch_rows(filters)

    def hydrate_all(self, records: List[DirtRecord]) -> List[DisplayRow]:
        """Hydrate *records* on a capped pool; results keep the input order."""
        if not records:
            return []
        rows: List[Optional[DisplayRow]] = [None] * len(records)
        workers = min(self.context.max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hydrate") as pool:
            futures = {pool.submit(self.hydrator.hydrate, record): index for index, record in enumerate(records)}
            for future in as_completed(futures):
                index = futures[future]
                try:
                    rows[index] = future.result()
                except Exception as e:  # why: one broken row must not take the reload down with it
                    logger.error(f"Hydration of {records[index].indexation_id} failed: {e}", exc_info=True)
                    rows[index] = failed_row(records[index], str(e))
        return rows

    # ── Add ──────────────────────────────────────────────────────

    def add_entry(self, user_id: str, attachment_url: str, notes: str = "") -> DisplayRow:
        """
        Validate the add form, write the entry in one transaction and return
        its hydrated row for insertion at the top of the grid.

        Raises EntryValidationError for the first failing check, before any
        write. Network failures while fetching the attachment propagate and
        leave the database untouched.
        """
        discord = self.context.discord
        storage = self.context.storage
        self._publish_busy(True, "add")
        try:
            entry = NewEntry.parse_form(user_id, attachment_url, notes)

            with self.context.open_database() as db:
                if db.attachment_url_exists(entry.attachment_url):
                    raise EntryValidationError("attachment_url", DUPLICATE_ATTACHMENT)
                try:
                    discord_user = discord.fetch_user(entry.user_id)
                except DiscordUserNotFound:
                    raise EntryValidationError("user_id", UNKNOWN_USER) from None
                if not discord.is_downloadable_picture(entry.attachment_url):
                    raise EntryValidationError("attachment_url", NOT_A_PICTURE)

                data, content_type = discord.download(entry.attachment_url)
                try:
                    decode_image(data)
                except StorageError:
                    raise EntryValidationError("attachment_url", NOT_A_PICTURE) from None

                record = db.add_entry(entry, discord_user.username, content_type, len(data), data)

                try:
                    storage.write_image(storage.dirt_picture_path(record.attachment_id), data)
                    storage.get_avatar(db, record.user_id, refresh=True)
                except (StorageError, OSError, sqlite3.Error) as e:
                    # The blobs are committed; the cache refills on the next hydration.
                    logger.warning(f"Cache write after adding {record.indexation_id} failed: {e}")

            row = self.hydrator.hydrate(record)
            self.events.publish(EntryEventData(
                event_type=EventType.ENTRY_ADDED,
                source="GridSynchronizer",
                timestamp=time.time(),
                indexation_id=record.indexation_id,
                user_id=record.user_id,
            ))
            return row
        finally:
            self._publish_busy(False, "add")

    # ── Delete ───────────────────────────────────────────────────

    def delete_entry(self, indexation_id: str, confirm: Callable[[str], bool]) -> Optional[DeletedEntry]:
        """
        Delete an entry once *confirm* approves it. Cached files are removed
        after the transaction commits; a missing file is not an error.
        """
        if not confirm(indexation_id):
            logger.info(f"Deletion of {indexation_id} cancelled by operator")
            return None

        self._publish_busy(True, "delete")
        try:
            with self.context.open_database() as db:
                deleted = db.delete_entry(indexation_id)
            if deleted is None:
                logger.warning(f"Entry {indexation_id} no longer exists")
                return None

            self.context.storage.remove_dirt_picture(deleted.attachment_id)
            if deleted.user_removed:
                self.context.storage.remove_avatar(deleted.user_id)

            self.events.publish(EntryEventData(
                event_type=EventType.ENTRY_DELETED,
                source="GridSynchronizer",
                timestamp=time.time(),
                indexation_id=deleted.indexation_id,
                user_id=deleted.user_id,
            ))
            return deleted
        finally:
            self._publish_busy(False, "delete")

    # ── Lookups for copy/view ────────────────────────────────────

    def pasteable_information(self, indexation_id: str) -> Optional[str]:
        with self.context.open_database() as db:
            record = db.get_dirt(indexation_id)
            if record is None:
                return None
            return information_string(record, db.get_user(record.user_id), pasteable=True)

    def entry_details(self, indexation_id: str) -> Optional[EntryDetails]:
        storage = self.context.storage
        with self.context.open_database() as db:
            record = db.get_dirt(indexation_id)
            if record is None:
                return None
            user = db.get_user(record.user_id)
            content_path = avatar_path = None
            try:
                content_path = storage.get_dirt_picture(db, record.attachment_id)
            except StorageError as e:
                logger.warning(f"Picture for {indexation_id} unavailable: {e}")
            try:
                avatar_path = storage.get_avatar(db, record.user_id)
            except StorageError as e:
                logger.warning(f"Avatar for {indexation_id} unavailable: {e}")
            return EntryDetails(
                record=record,
                user=user,
                attachment=db.get_attachment(record.attachment_id),
                information=information_string(record, user),
                content_path=content_path,
                avatar_path=avatar_path,
            )

    def _publish_busy(self, busy: bool, operation: str):
        self.events.publish(GridBusyEventData(
            event_type=EventType.GRID_BUSY,
            source="GridSynchronizer",
            timestamp=time.time(),
            busy=busy,
            operation=operation,
        ))

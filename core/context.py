# core/context.py
"""The collaborators every locker component is constructed with."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from core.database import LockerDatabase
from core.event_system import EventSystem
from core.storage import DirtStorage
from network.discord_client import DiscordClient

logger = logging.getLogger(__name__)


@dataclass
class LockerContext:
    config_manager: object
    db_path: str
    storage: DirtStorage
    discord: DiscordClient
    events: EventSystem

    @classmethod
    def from_config(cls, config_manager, discord: Optional[DiscordClient] = None,
                    events: Optional[EventSystem] = None) -> "LockerContext":
        db_path = os.path.expanduser(config_manager.get("database.path"))
        cache_dir = os.path.expanduser(config_manager.get("files.cache.dir"))

        # Create the schema once; workers open without re-initializing.
        LockerDatabase(db_path).close()

        discord = discord or DiscordClient.from_config(config_manager)
        storage = DirtStorage(cache_dir, discord, thumbnail_size=int(config_manager.get("gui.row_height", 100)))
        logger.info(f"Locker context ready (db={db_path}, cache={cache_dir})")
        return cls(
            config_manager=config_manager,
            db_path=db_path,
            storage=storage,
            discord=discord,
            events=events or EventSystem(),
        )

    def open_database(self) -> LockerDatabase:
        """A fresh connection for one unit of work. Close it when done."""
        return LockerDatabase(self.db_path, initialize=False)

    @property
    def max_workers(self) -> int:
        return max(1, int(self.config_manager.get("hydration.max_workers", 8)))

"""
Shared pytest fixtures for Dirt Locker tests.
"""
import io
import os
import random
import sys
import threading
import time

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from PIL import Image

from core.context import LockerContext
from core.errors import DiscordError, DiscordUserNotFound
from core.event_system import EventSystem
from network.discord_client import DiscordUser


def png_bytes(color=(200, 40, 40), size=(32, 24)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, "PNG")
    return buffer.getvalue()


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict."""

    def __init__(self, overrides: dict | None = None):
        self._cfg: dict = {
            "database": {"path": None},      # must be overridden per fixture
            "files": {"cache": {"dir": None}},
            "hydration": {"max_workers": 4},
            "gui": {"row_height": 50},
        }
        if overrides:
            for key, value in overrides.items():
                self.set(key, value)

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self._cfg
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default

    def set(self, key: str, value):
        keys = key.split(".")
        node = self._cfg
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value

    @property
    def discord_token(self) -> str:
        return ""


class FakeDiscordClient:
    """In-memory stand-in for DiscordClient.

    ``users`` maps user ids to usernames, ``pictures`` maps URLs to image
    bytes. URLs in ``failing`` raise DiscordError; ``latency`` adds a random
    delay up to that many seconds to every download.
    """

    def __init__(self):
        self.users: dict = {}
        self.pictures: dict = {}
        self.failing: set = set()
        self.latency: float = 0.0
        self.downloads: list = []
        self._lock = threading.Lock()

    def add_user(self, user_id: str, username: str):
        self.users[user_id] = username

    def add_picture(self, url: str, data: bytes | None = None, content_type: str = "image/png"):
        self.pictures[url] = (data if data is not None else png_bytes(), content_type)

    def avatar_url(self, user_id: str) -> str:
        return f"https://cdn.example/avatars/{user_id}.png"

    def fetch_user(self, user_id: str) -> DiscordUser:
        if user_id not in self.users:
            raise DiscordUserNotFound(user_id)
        return DiscordUser(id=user_id, username=self.users[user_id])

    def download_avatar(self, user_id: str) -> bytes:
        self.fetch_user(user_id)
        url = self.avatar_url(user_id)
        if url not in self.pictures:
            self.add_picture(url, png_bytes((40, 40, 200), (16, 16)))
        data, _ = self.download(url)
        return data

    def is_downloadable_picture(self, url: str) -> bool:
        return url in self.pictures and url not in self.failing and self.pictures[url][1].startswith("image/")

    def download(self, url: str):
        if self.latency:
            time.sleep(random.uniform(0, self.latency))
        with self._lock:
            self.downloads.append(url)
        if url in self.failing or url not in self.pictures:
            raise DiscordError(f"{url} returned 404")
        return self.pictures[url]


@pytest.fixture()
def fake_discord():
    return FakeDiscordClient()


@pytest.fixture()
def config(tmp_path):
    return MockConfigManager({
        "database.path": str(tmp_path / "locker.db"),
        "files.cache.dir": str(tmp_path / "cache"),
    })


@pytest.fixture()
def context(config, fake_discord):
    """A LockerContext wired to a fresh database, cache dir and fake Discord."""
    return LockerContext.from_config(config, discord=fake_discord, events=EventSystem())


@pytest.fixture()
def db(context):
    database = context.open_database()
    yield database
    database.close()


@pytest.fixture()
def add_entries(context, fake_discord):
    """Add *count* entries for *user_id* through the synchronizer; returns the rows."""
    from core.grid_sync import GridSynchronizer

    synchronizer = GridSynchronizer(context)
    counter = {"n": 0}

    def _add(user_id="111", username="alice", count=1, notes=""):
        fake_discord.add_user(user_id, username)
        rows = []
        for _ in range(count):
            counter["n"] += 1
            url = f"https://cdn.example/attachments/{counter['n']}.png"
            fake_discord.add_picture(url, png_bytes((counter["n"] * 20 % 255, 80, 120)))
            rows.append(synchronizer.add_entry(user_id, url, notes))
        return rows

    return _add

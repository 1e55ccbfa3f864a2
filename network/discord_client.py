"""Discord REST and CDN client.

Pure stdlib HTTP, no Qt dependency. Runs on worker threads.
"""

import json
import logging
import urllib.error
import urllib.request
from typing import Optional, Tuple

from pydantic import BaseModel, ValidationError

from core.errors import DiscordError, DiscordUserNotFound

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://discord.com/api/v10"
DEFAULT_CDN_BASE = "https://cdn.discordapp.com"
AVATAR_SIZE = 128


class DiscordUser(BaseModel):
    """The subset of the Discord user object the locker uses."""
    id: str
    username: str
    global_name: Optional[str] = None
    avatar: Optional[str] = None
    discriminator: str = "0"

    @property
    def display_name(self) -> str:
        return self.global_name or self.username

    def default_avatar_index(self) -> int:
        # Legacy accounts still carry a discriminator; migrated ones use "0".
        if self.discriminator not in ("", "0"):
            return int(self.discriminator) % 5
        return (int(self.id) >> 22) % 6


class DiscordClient:
    """Looks up users and downloads avatars and attachments."""

    def __init__(self, token: str = "", api_base: str = DEFAULT_API_BASE,
                 cdn_base: str = DEFAULT_CDN_BASE, timeout: float = 15,
                 user_agent: str = "DirtLocker/1.0"):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.cdn_base = cdn_base.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent

    @classmethod
    def from_config(cls, config_manager) -> "DiscordClient":
        return cls(
            token=config_manager.discord_token,
            api_base=config_manager.get("discord.api_base", DEFAULT_API_BASE),
            cdn_base=config_manager.get("discord.cdn_base", DEFAULT_CDN_BASE),
            timeout=config_manager.get("http.timeout", 15),
            user_agent=config_manager.get("http.user_agent", "DirtLocker/1.0"),
        )

    # ── Users ────────────────────────────────────────────────────

    def fetch_user(self, user_id: str) -> DiscordUser:
        """GET /users/{id}. Raises DiscordUserNotFound on 404."""
        url = f"{self.api_base}/users/{user_id}"
        headers = {"Authorization": f"Bot {self.token}"} if self.token else {}
        try:
            payload = self._request(url, headers=headers)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise DiscordUserNotFound(user_id) from e
            raise DiscordError(f"Discord API returned {e.code} for user {user_id}") from e
        except urllib.error.URLError as e:
            raise DiscordError(f"Discord API unreachable: {e.reason}") from e
        except TimeoutError as e:
            raise DiscordError(f"Discord API timed out for user {user_id}") from e

        try:
            return DiscordUser.model_validate(json.loads(payload.decode("utf-8")))
        except (ValueError, ValidationError) as e:
            raise DiscordError(f"Malformed user payload for {user_id}") from e

    def avatar_url(self, user: DiscordUser) -> str:
        if user.avatar:
            return f"{self.cdn_base}/avatars/{user.id}/{user.avatar}.png?size={AVATAR_SIZE}"
        return f"{self.cdn_base}/embed/avatars/{user.default_avatar_index()}.png"

    def download_avatar(self, user_id: str) -> bytes:
        user = self.fetch_user(user_id)
        data, _ = self.download(self.avatar_url(user))
        return data

    # ── Attachments ──────────────────────────────────────────────

    def probe(self, url: str) -> Tuple[str, int]:
        """Return ``(content_type, size)`` for *url* without downloading the body."""
        try:
            with self._open(url, method="HEAD") as response:
                return self._describe(response)
        except urllib.error.HTTPError as e:
            if e.code not in (403, 405):
                raise DiscordError(f"{url} returned {e.code}") from e
        except urllib.error.URLError as e:
            raise DiscordError(f"{url} unreachable: {e.reason}") from e
        except TimeoutError as e:
            raise DiscordError(f"{url} timed out") from e

        # Some CDNs refuse HEAD; a GET we never read is the fallback.
        try:
            with self._open(url) as response:
                return self._describe(response)
        except urllib.error.URLError as e:
            raise DiscordError(f"{url} unreachable: {e}") from e
        except TimeoutError as e:
            raise DiscordError(f"{url} timed out") from e

    def is_downloadable_picture(self, url: str) -> bool:
        try:
            content_type, _ = self.probe(url)
        except DiscordError as e:
            logger.info("Attachment probe failed for %s: %s", url, e)
            return False
        return content_type.startswith("image/")

    def download(self, url: str) -> Tuple[bytes, str]:
        """Return ``(body, content_type)``."""
        try:
            with self._open(url) as response:
                content_type, _ = self._describe(response)
                return response.read(), content_type
        except urllib.error.HTTPError as e:
            raise DiscordError(f"{url} returned {e.code}") from e
        except urllib.error.URLError as e:
            raise DiscordError(f"{url} unreachable: {e.reason}") from e
        except TimeoutError as e:
            raise DiscordError(f"{url} timed out") from e

    # ── Internals ────────────────────────────────────────────────

    def _open(self, url: str, method: str = "GET", headers: Optional[dict] = None):
        request = urllib.request.Request(url, method=method, headers={"User-Agent": self.user_agent, **(headers or {})})
        return urllib.request.urlopen(request, timeout=self.timeout)

    def _request(self, url: str, headers: Optional[dict] = None) -> bytes:
        with self._open(url, headers=headers) as response:
            return response.read()

    @staticmethod
    def _describe(response) -> Tuple[str, int]:
        content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip().lower()
        length = response.headers.get("Content-Length")
        return content_type, int(length) if length and length.isdigit() else 0

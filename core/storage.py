# core/storage.py
"""On-disk image cache for dirt pictures and avatars.

Lookups fall through disk -> database blob -> network and write back on the
way out, so any machine sharing the database can rebuild its cache. Cached
files are normalized to PNG.
"""
import io
import logging
import os
import uuid

from PIL import Image, ImageOps, UnidentifiedImageError

from core.database import LockerDatabase
from core.errors import DiscordError, StorageError

logger = logging.getLogger(__name__)

AVATARS_SECTION = "avatars"
DIRT_SECTION = "dirt"


def remove_file(path: str) -> bool:
    """Delete *path*; a missing file is not an error. Returns True if removed."""
    try:
        os.remove(path)
        logger.debug(f"Removed cache file: {path}")
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
        return False


def decode_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise StorageError(f"Not a readable image ({len(data)} bytes)") from e
    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    return img


def thumbnail_png(path: str, size: int) -> bytes:
    """Scale the image at *path* to fit a size x size box, as PNG bytes."""
    try:
        with Image.open(path) as img:
            img.thumbnail((size, size), Image.Resampling.LANCZOS)
            buffer = io.BytesIO()
            img.save(buffer, "PNG")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise StorageError(f"Could not build thumbnail for {path}: {e}") from e
    return buffer.getvalue()


class DirtStorage:
    def __init__(self, cache_dir: str, discord_client, thumbnail_size: int = 100):
        self.cache_dir = os.path.expanduser(cache_dir)
        self.discord = discord_client
        self.thumbnail_size = thumbnail_size

        for section in (AVATARS_SECTION, DIRT_SECTION):
            os.makedirs(self.section_dir(section), exist_ok=True)

    def section_dir(self, section: str) -> str:
        return os.path.join(self.cache_dir, section)

    def dirt_picture_path(self, attachment_id: int) -> str:
        return os.path.join(self.section_dir(DIRT_SECTION), f"{attachment_id}.png")

    def avatar_path(self, user_id: str) -> str:
        return os.path.join(self.section_dir(AVATARS_SECTION), f"{user_id}.png")

    # ── Fetch-through ────────────────────────────────────────────

    def get_dirt_picture(self, db: LockerDatabase, attachment_id: int) -> str:
        """Local path of the content image for *attachment_id*."""
        path = self.dirt_picture_path(attachment_id)
        if os.path.exists(path):
            return path

        data = db.get_attachment_blob(attachment_id)
        if data is None:
            attachment = db.get_attachment(attachment_id)
            if attachment is None:
                raise StorageError(f"Attachment {attachment_id} is not registered")
            logger.info(f"Downloading attachment {attachment_id} from {attachment.attachment_url}")
            data = self._download(attachment.attachment_url)
            self.write_image(path, data)
            db.store_attachment_blob(attachment_id, data)
            return path

        self.write_image(path, data)
        return path

    def get_avatar(self, db: LockerDatabase, user_id: str, refresh: bool = False) -> str:
        """Local path of *user_id*'s avatar. ``refresh`` forces a new download."""
        path = self.avatar_path(user_id)
        if not refresh:
            if os.path.exists(path):
                return path
            data = db.get_avatar_blob(user_id)
            if data is not None:
                self.write_image(path, data)
                return path

        try:
            data = self.discord.download_avatar(user_id)
        except DiscordError as e:
            raise StorageError(f"Could not download avatar for {user_id}: {e}") from e
        self.write_image(path, data)
        db.store_avatar_blob(user_id, data)
        return path

    def thumbnail(self, path: str) -> bytes:
        return thumbnail_png(path, self.thumbnail_size)

    # ── Writes / removal ─────────────────────────────────────────

    def write_image(self, path: str, data: bytes) -> None:
        """Decode *data* and store it at *path* as PNG, replacing atomically."""
        img = decode_image(data)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
        try:
            img.save(tmp_path, "PNG")
            os.replace(tmp_path, path)
        except OSError as e:
            remove_file(tmp_path)
            raise StorageError(f"Could not write {path}: {e}") from e

    def remove_dirt_picture(self, attachment_id: int) -> bool:
        return remove_file(self.dirt_picture_path(attachment_id))

    def remove_avatar(self, user_id: str) -> bool:
        return remove_file(self.avatar_path(user_id))

    def _download(self, url: str) -> bytes:
        try:
            data, _ = self.discord.download(url)
        except DiscordError as e:
            raise StorageError(str(e)) from e
        return data


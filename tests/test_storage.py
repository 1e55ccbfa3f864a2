"""Tests for core.storage: the disk image cache."""
import io
import os
from unittest.mock import patch

import pytest
from PIL import Image

from core.errors import StorageError
from core.storage import DirtStorage, decode_image, remove_file, thumbnail_png
from conftest import png_bytes


@pytest.fixture()
def storage(context):
    return context.storage


def _register(db, url="https://cdn.example/a.png", data=b"x"):
    from core.models import NewEntry
    return db.add_entry(NewEntry(user_id="111", attachment_url=url), "alice", "image/png", len(data), data)


class TestLayout:
    def test_sections_created(self, tmp_path, fake_discord):
        storage = DirtStorage(str(tmp_path / "cache"), fake_discord)
        assert os.path.isdir(tmp_path / "cache" / "dirt")
        assert os.path.isdir(tmp_path / "cache" / "avatars")
        assert storage.dirt_picture_path(7) == str(tmp_path / "cache" / "dirt" / "7.png")
        assert storage.avatar_path("111") == str(tmp_path / "cache" / "avatars" / "111.png")


class TestDirtPictureFetchThrough:
    def test_disk_hit_skips_database(self, storage, db, fake_discord):
        record = _register(db, data=png_bytes())
        storage.write_image(storage.dirt_picture_path(record.attachment_id), png_bytes())
        db.conn.execute("DELETE FROM AttachmentStorage")
        db.conn.commit()

        assert storage.get_dirt_picture(db, record.attachment_id) == storage.dirt_picture_path(record.attachment_id)
        assert fake_discord.downloads == []

    def test_blob_restores_file(self, storage, db, fake_discord):
        record = _register(db, data=png_bytes())
        path = storage.get_dirt_picture(db, record.attachment_id)
        assert os.path.exists(path)
        assert fake_discord.downloads == []

    def test_network_fallback_stores_blob(self, storage, db, fake_discord):
        data = png_bytes((1, 2, 3))
        record = _register(db, data=data)
        db.conn.execute("DELETE FROM AttachmentStorage")
        db.conn.commit()
        fake_discord.add_picture("https://cdn.example/a.png", data)

        path = storage.get_dirt_picture(db, record.attachment_id)

        assert os.path.exists(path)
        assert fake_discord.downloads == ["https://cdn.example/a.png"]
        assert db.get_attachment_blob(record.attachment_id) == data

    def test_network_failure_raises_storage_error(self, storage, db, fake_discord):
        record = _register(db, data=png_bytes())
        db.conn.execute("DELETE FROM AttachmentStorage")
        db.conn.commit()

        with pytest.raises(StorageError):
            storage.get_dirt_picture(db, record.attachment_id)
        assert not os.path.exists(storage.dirt_picture_path(record.attachment_id))

    def test_unregistered_attachment(self, storage, db):
        with pytest.raises(StorageError):
            storage.get_dirt_picture(db, 12345)

    def test_cached_file_is_png(self, storage, db):
        buffer = io.BytesIO()
        Image.new("RGB", (10, 10), "blue").save(buffer, "JPEG")
        record = _register(db, data=buffer.getvalue())

        path = storage.get_dirt_picture(db, record.attachment_id)
        with Image.open(path) as img:
            assert img.format == "PNG"


class TestAvatar:
    def test_downloads_and_caches(self, storage, db, fake_discord):
        fake_discord.add_user("111", "alice")
        path = storage.get_avatar(db, "111")
        assert os.path.exists(path)
        assert db.get_avatar_blob("111") is not None

        fake_discord.downloads.clear()
        storage.get_avatar(db, "111")
        assert fake_discord.downloads == []

    def test_refresh_forces_download(self, storage, db, fake_discord):
        fake_discord.add_user("111", "alice")
        storage.get_avatar(db, "111")
        fake_discord.downloads.clear()
        storage.get_avatar(db, "111", refresh=True)
        assert fake_discord.downloads == [fake_discord.avatar_url("111")]

    def test_unknown_user_raises_storage_error(self, storage, db):
        with pytest.raises(StorageError):
            storage.get_avatar(db, "999")


class TestHelpers:
    def test_remove_missing_file(self, tmp_path):
        assert remove_file(str(tmp_path / "nope.png")) is False

    def test_remove_existing_file(self, tmp_path):
        path = tmp_path / "x.png"
        path.write_bytes(b"x")
        assert remove_file(str(path)) is True
        assert not path.exists()

    def test_remove_permission_error_is_logged(self, tmp_path, caplog):
        with patch("core.storage.os.remove", side_effect=PermissionError("denied")):
            assert remove_file(str(tmp_path / "x.png")) is False
        assert "Failed to remove" in caplog.text

    def test_decode_rejects_garbage(self):
        with pytest.raises(StorageError):
            decode_image(b"garbage")

    def test_decode_converts_palette(self):
        buffer = io.BytesIO()
        Image.new("P", (4, 4)).save(buffer, "PNG")
        assert decode_image(buffer.getvalue()).mode == "RGBA"

    def test_thumbnail_fits_box(self, tmp_path):
        path = tmp_path / "big.png"
        Image.new("RGB", (400, 200), "red").save(path)
        with Image.open(io.BytesIO(thumbnail_png(str(path), 50))) as thumb:
            assert thumb.size == (50, 25)

    def test_write_image_leaves_no_temp_files(self, storage):
        path = storage.dirt_picture_path(1)
        storage.write_image(path, png_bytes())
        assert os.listdir(os.path.dirname(path)) == ["1.png"]

"""Tests for network.discord_client with urlopen patched out."""
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from core.errors import DiscordError, DiscordUserNotFound
from network.discord_client import DiscordClient, DiscordUser


def _response(body=b"", content_type="image/png", length=None):
    response = MagicMock()
    response.read.return_value = body
    response.headers = {"Content-Type": content_type}
    if length is not None:
        response.headers["Content-Length"] = str(length)
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


def _http_error(code):
    return urllib.error.HTTPError("https://example", code, "error", {}, None)


@pytest.fixture()
def client():
    return DiscordClient(token="secret", api_base="https://api.example/v10/", cdn_base="https://cdn.example")


class TestFetchUser:
    def test_parses_payload(self, client):
        payload = json.dumps({"id": "111", "username": "alice", "avatar": "abc", "extra": 1}).encode()
        with patch("urllib.request.urlopen", return_value=_response(payload)) as urlopen:
            user = client.fetch_user("111")

        request = urlopen.call_args[0][0]
        assert request.full_url == "https://api.example/v10/users/111"
        assert request.get_header("Authorization") == "Bot secret"
        assert user.username == "alice"
        assert user.avatar == "abc"

    def test_404_is_user_not_found(self, client):
        with patch("urllib.request.urlopen", side_effect=_http_error(404)):
            with pytest.raises(DiscordUserNotFound):
                client.fetch_user("999")

    def test_other_http_errors(self, client):
        with patch("urllib.request.urlopen", side_effect=_http_error(500)):
            with pytest.raises(DiscordError) as exc_info:
                client.fetch_user("111")
        assert not isinstance(exc_info.value, DiscordUserNotFound)

    def test_unreachable(self, client):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("no route")):
            with pytest.raises(DiscordError):
                client.fetch_user("111")

    def test_read_timeout(self, client):
        with patch("urllib.request.urlopen", side_effect=TimeoutError("The read operation timed out")):
            with pytest.raises(DiscordError) as exc_info:
                client.fetch_user("111")
        assert not isinstance(exc_info.value, DiscordUserNotFound)

    def test_malformed_payload(self, client):
        with patch("urllib.request.urlopen", return_value=_response(b"{not json")):
            with pytest.raises(DiscordError):
                client.fetch_user("111")


class TestAvatarUrl:
    def test_custom_avatar(self, client):
        user = DiscordUser(id="111", username="alice", avatar="hash")
        assert client.avatar_url(user) == "https://cdn.example/avatars/111/hash.png?size=128"

    def test_default_avatar_new_username_system(self, client):
        user = DiscordUser(id=str(5 << 22), username="bob")
        assert client.avatar_url(user) == "https://cdn.example/embed/avatars/5.png"

    def test_default_avatar_legacy_discriminator(self):
        assert DiscordUser(id="1", username="old", discriminator="0007").default_avatar_index() == 2

    def test_display_name(self):
        assert DiscordUser(id="1", username="a", global_name="Alice").display_name == "Alice"
        assert DiscordUser(id="1", username="a").display_name == "a"


class TestAttachments:
    def test_probe_uses_head(self, client):
        with patch("urllib.request.urlopen", return_value=_response(content_type="image/PNG; charset=x", length=42)) as urlopen:
            assert client.probe("https://cdn.example/a.png") == ("image/png", 42)
        assert urlopen.call_args[0][0].get_method() == "HEAD"

    def test_probe_falls_back_to_get(self, client):
        responses = [_http_error(405), _response(content_type="image/gif")]
        with patch("urllib.request.urlopen", side_effect=responses) as urlopen:
            assert client.probe("https://cdn.example/a.gif") == ("image/gif", 0)
        assert [c[0][0].get_method() for c in urlopen.call_args_list] == ["HEAD", "GET"]

    def test_is_downloadable_picture(self, client):
        with patch("urllib.request.urlopen", return_value=_response(content_type="image/jpeg")):
            assert client.is_downloadable_picture("https://cdn.example/a.jpg")
        with patch("urllib.request.urlopen", return_value=_response(content_type="text/html")):
            assert not client.is_downloadable_picture("https://cdn.example/page")
        with patch("urllib.request.urlopen", side_effect=_http_error(404)):
            assert not client.is_downloadable_picture("https://cdn.example/gone.png")

    def test_download(self, client):
        with patch("urllib.request.urlopen", return_value=_response(b"bytes", "image/webp")):
            assert client.download("https://cdn.example/a.webp") == (b"bytes", "image/webp")

    def test_download_error(self, client):
        with patch("urllib.request.urlopen", side_effect=_http_error(403)):
            with pytest.raises(DiscordError):
                client.download("https://cdn.example/a.png")

    def test_download_read_timeout(self, client):
        response = _response()
        response.read.side_effect = TimeoutError("The read operation timed out")
        with patch("urllib.request.urlopen", return_value=response):
            with pytest.raises(DiscordError, match="timed out"):
                client.download("https://cdn.example/a.png")

    def test_probe_timeout_is_not_a_picture(self, client):
        with patch("urllib.request.urlopen", side_effect=TimeoutError("timed out")):
            assert not client.is_downloadable_picture("https://cdn.example/slow.png")


def test_from_config(config, monkeypatch):
    monkeypatch.setattr(type(config), "discord_token", property(lambda self: "tok"))
    config.set("http.timeout", 3)
    client = DiscordClient.from_config(config)
    assert client.token == "tok"
    assert client.timeout == 3
    assert client.api_base == "https://discord.com/api/v10"

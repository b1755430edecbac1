"""
Test client HTTP esterni: download Dropbox e notifiche KakaoWork.
"""
import json
from unittest.mock import patch

import httpx
import pytest

from kakaowork_notifier import KAKAOWORK_SEND_URL, KakaoWorkNotifier, send_kakaowork_message
from transfer.dropbox_store import DROPBOX_DOWNLOAD_URL, DropboxFileStore, normalize_remote_path

RealAsyncClient = httpx.AsyncClient


def client_with(handler):
    """Factory AsyncClient con trasporto finto."""
    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return RealAsyncClient(*args, **kwargs)
    return factory


class TestDropboxFileStore:
    @pytest.mark.parametrize("path, expected", [
        ("송장/메세지.xlsx", "/송장/메세지.xlsx"),
        ("\\송장\\메세지.xlsx", "/송장/메세지.xlsx"),
        (" /a/b.csv ", "/a/b.csv"),
    ])
    def test_normalize_remote_path(self, path, expected):
        assert normalize_remote_path(path) == expected

    @pytest.mark.asyncio
    async def test_download_writes_file(self, tmp_path):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["arg"] = json.loads(request.headers["Dropbox-API-Arg"])
            return httpx.Response(200, content=b"excel-bytes")

        store = DropboxFileStore(access_token="tok", timeout_sec=5)
        local_path = tmp_path / "메세지.xlsx"

        with patch("transfer.dropbox_store.httpx.AsyncClient", client_with(handler)):
            written = await store.download("송장/메세지.xlsx", str(local_path))

        assert written == len(b"excel-bytes")
        assert local_path.read_bytes() == b"excel-bytes"
        assert seen["url"] == DROPBOX_DOWNLOAD_URL
        assert seen["auth"] == "Bearer tok"
        assert seen["arg"] == {"path": "/송장/메세지.xlsx"}

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, tmp_path):
        handler = lambda request: httpx.Response(409, json={"error_summary": "path/not_found/"})
        store = DropboxFileStore(access_token="tok", timeout_sec=5)

        with patch("transfer.dropbox_store.httpx.AsyncClient", client_with(handler)):
            with pytest.raises(httpx.HTTPStatusError):
                await store.download("/manca.xlsx", str(tmp_path / "manca.xlsx"))

        assert not (tmp_path / "manca.xlsx").exists()

    @pytest.mark.asyncio
    async def test_missing_token(self, tmp_path):
        store = DropboxFileStore(access_token="", timeout_sec=5)
        store._access_token = ""

        with pytest.raises(RuntimeError, match="DROPBOX_ACCESS_TOKEN"):
            await store.download("/a.xlsx", str(tmp_path / "a.xlsx"))


class TestKakaoWorkNotifier:
    @pytest.mark.asyncio
    async def test_send_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        with patch("kakaowork_notifier.httpx.AsyncClient", client_with(handler)):
            sent = await send_kakaowork_message("1234", "✅ completata", bot_token="bot")

        assert sent is True
        assert seen["url"] == KAKAOWORK_SEND_URL
        assert seen["body"] == {"conversation_id": "1234", "text": "✅ completata"}

    @pytest.mark.asyncio
    async def test_api_error_returns_false(self):
        handler = lambda request: httpx.Response(200, json={"success": False, "error": {"message": "invalid"}})

        with patch("kakaowork_notifier.httpx.AsyncClient", client_with(handler)):
            assert await send_kakaowork_message("1234", "x", bot_token="bot") is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with patch("kakaowork_notifier.httpx.AsyncClient", client_with(handler)):
            assert await send_kakaowork_message("1234", "x", bot_token="bot") is False

    @pytest.mark.asyncio
    async def test_not_configured(self):
        notifier = KakaoWorkNotifier(conversation_id="1234", bot_token="bot")
        notifier.bot_token = ""

        assert await notifier.notify("x") is False

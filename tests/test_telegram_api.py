import asyncio

import aiohttp
import pytest

import telegram_api
from telegram_api import TelegramApi, TelegramApiError, _is_transient


def make_api(tmp_path, monkeypatch, responses, downloads):
    api = TelegramApi("123:abc", tmp_path)

    async def fake_request(method, params):
        result = responses[method]
        if isinstance(result, Exception):
            raise result
        return result

    async def fake_download(file_path, dest):
        downloads.append((file_path, dest))
        dest.write_bytes(b"image")

    monkeypatch.setattr(api, "_request", fake_request)
    monkeypatch.setattr(api, "_download", fake_download)
    return api


def test_prefers_thumbnail(tmp_path, monkeypatch):
    downloads = []
    seen = []
    api = make_api(tmp_path, monkeypatch, {
        'getCustomEmojiStickers': [{'file_id': 'big', 'thumbnail': {'file_id': 'small'}}],
        'getFile': {'file_path': 'thumbnails/file_1.webp'},
    }, downloads)
    original = api._request

    async def spying_request(method, params):
        seen.append((method, params))
        return await original(method, params)

    monkeypatch.setattr(api, "_request", spying_request)

    path = asyncio.run(api.fetch_asset("55"))

    assert path == str(tmp_path / "55.webp")
    assert seen == [
        ('getCustomEmojiStickers', {'custom_emoji_ids': ['55']}),
        ('getFile', {'file_id': 'small'}),
    ]
    assert downloads == [('thumbnails/file_1.webp', tmp_path / "55.webp")]


def test_missing_extension_defaults_to_webp(tmp_path, monkeypatch):
    downloads = []
    api = make_api(tmp_path, monkeypatch, {
        'getCustomEmojiStickers': [{'file_id': 'big'}],
        'getFile': {'file_path': 'stickers/file_2'},
    }, downloads)

    assert asyncio.run(api.fetch_asset("56")) == str(tmp_path / "56.webp")


def test_existing_file_is_reused(tmp_path, monkeypatch):
    downloads = []
    (tmp_path / "57.png").write_bytes(b"cached")
    api = make_api(tmp_path, monkeypatch, {
        'getCustomEmojiStickers': [{'file_id': 'big'}],
        'getFile': {'file_path': 'stickers/file_3.png'},
    }, downloads)

    assert asyncio.run(api.fetch_asset("57")) == str(tmp_path / "57.png")
    assert downloads == []


def test_unknown_emoji_returns_none(tmp_path, monkeypatch):
    api = make_api(tmp_path, monkeypatch, {'getCustomEmojiStickers': []}, [])
    assert asyncio.run(api.fetch_asset("58")) is None


def test_api_error_returns_none(tmp_path, monkeypatch):
    api = make_api(tmp_path, monkeypatch, {
        'getCustomEmojiStickers': TelegramApiError("Unauthorized"),
    }, [])
    assert asyncio.run(api.fetch_asset("59")) is None


def test_missing_file_path_returns_none(tmp_path, monkeypatch):
    api = make_api(tmp_path, monkeypatch, {
        'getCustomEmojiStickers': [{'file_id': 'big'}],
        'getFile': {},
    }, [])
    assert asyncio.run(api.fetch_asset("60")) is None


class FakeResponse:
    def __init__(self, chunks, error=None, status=200):
        self.chunks = chunks
        self.error = error
        self.status = status
        self.content = self

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientResponseError(None, (), status=self.status)

    async def iter_chunked(self, size):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def fake_session(monkeypatch, response, calls):
    class FakeSession:
        def __init__(self, **kwargs):
            pass

        def get(self, url):
            calls.append(url)
            return response

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

    monkeypatch.setattr(telegram_api.aiohttp, "ClientSession", FakeSession)


def test_client_errors_are_not_retried():
    assert not _is_transient(aiohttp.ClientResponseError(None, (), status=404))
    assert _is_transient(aiohttp.ClientResponseError(None, (), status=503))
    assert _is_transient(aiohttp.ClientConnectionError())
    assert not _is_transient(ValueError())


def test_download_writes_destination(tmp_path, monkeypatch):
    calls = []
    fake_session(monkeypatch, FakeResponse([b"ab", b"cd"]), calls)
    api = TelegramApi("123:abc", tmp_path)
    dest = tmp_path / "1.webp"

    asyncio.run(api._download("stickers/file_1.webp", dest))

    assert dest.read_bytes() == b"abcd"
    assert not (tmp_path / "1.webp.part").exists()
    assert calls == [f"{TelegramApi.API_URL}/file/bot123:abc/stickers/file_1.webp"]


def test_interrupted_download_leaves_no_part_file(tmp_path, monkeypatch):
    fake_session(monkeypatch, FakeResponse([b"ab"], error=ConnectionResetError("reset")), [])
    api = TelegramApi("123:abc", tmp_path)
    dest = tmp_path / "1.webp"

    with pytest.raises(ConnectionResetError):
        asyncio.run(api._download("stickers/file_1.webp", dest))

    assert not dest.exists()
    assert not (tmp_path / "1.webp.part").exists()


def test_not_found_download_is_attempted_once(tmp_path, monkeypatch):
    calls = []
    fake_session(monkeypatch, FakeResponse([], status=404), calls)
    api = TelegramApi("123:abc", tmp_path)

    with pytest.raises(aiohttp.ClientResponseError):
        asyncio.run(api._download("stickers/gone.webp", tmp_path / "2.webp"))

    assert len(calls) == 1
    assert not (tmp_path / "2.webp.part").exists()

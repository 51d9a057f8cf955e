"""Tests for storage/ — Drive query building and REST lookups, local
directory backend, factory."""

import json
from types import SimpleNamespace

import httpx
import pytest

from storage import StorageError, StorageItem, create_storage
from storage.drive import DriveStorage, build_query
from storage.local import LocalStorage


# ─── Drive ───────────────────────────────────────────────────────

class TestBuildQuery:
    def test_plain(self):
        assert build_query("F1", "27122025.png") == (
            "'F1' in parents and name='27122025.png' and trashed=false"
        )

    def test_quotes_escaped(self):
        q = build_query("F1", "it's.png")
        assert "name='it\\'s.png'" in q

    def test_backslash_escaped(self):
        q = build_query("F1", "a\\b.png")
        assert "name='a\\\\b.png'" in q


def _drive(handler, credentials=None):
    creds = credentials or SimpleNamespace(valid=True, token="tok")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DriveStorage(credentials=creds, client=client)


class TestDriveStorage:
    @pytest.mark.asyncio
    async def test_find_hit(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"files": [{"id": "abc", "name": "27122025.png"}]})

        drive = _drive(handler)
        item = await drive.find("F1", "27122025.png")
        await drive.close()
        assert item == StorageItem(id="abc", name="27122025.png")
        assert seen["auth"] == "Bearer tok"
        assert seen["params"]["q"] == build_query("F1", "27122025.png")
        assert seen["params"]["pageSize"] == "1"
        assert seen["params"]["supportsAllDrives"] == "true"

    @pytest.mark.asyncio
    async def test_find_miss(self):
        drive = _drive(lambda request: httpx.Response(200, json={"files": []}))
        assert await drive.find("F1", "nope.png") is None

    @pytest.mark.asyncio
    async def test_http_error_raises_storage_error(self):
        drive = _drive(lambda request: httpx.Response(500, text="backend error"))
        with pytest.raises(StorageError):
            await drive.find("F1", "x.png")

    @pytest.mark.asyncio
    async def test_transport_error_raises_storage_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        drive = _drive(handler)
        with pytest.raises(StorageError):
            await drive.find("F1", "x.png")

    @pytest.mark.asyncio
    async def test_bad_json_raises_storage_error(self):
        drive = _drive(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(StorageError):
            await drive.find("F1", "x.png")

    @pytest.mark.asyncio
    async def test_item_without_id_raises(self):
        drive = _drive(lambda request: httpx.Response(200, json={"files": [{"name": "x.png"}]}))
        with pytest.raises(StorageError):
            await drive.find("F1", "x.png")

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(self):
        class _Creds:
            valid = False
            token = None

            def refresh(self, request):
                self.valid = True
                self.token = "fresh"

        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"files": []})

        drive = _drive(handler, credentials=_Creds())
        await drive.find("F1", "x.png")
        assert seen == ["Bearer fresh"]

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_storage_error(self):
        import google.auth.exceptions

        class _Creds:
            valid = False
            token = None

            def refresh(self, request):
                raise google.auth.exceptions.RefreshError("invalid_grant")

        drive = _drive(lambda request: httpx.Response(200, json={}), credentials=_Creds())
        with pytest.raises(StorageError, match="auth"):
            await drive.find("F1", "x.png")

    def test_public_url(self):
        drive = _drive(lambda request: httpx.Response(200))
        url = drive.public_url(StorageItem(id="abc", name="x.png"))
        assert url == "https://drive.google.com/uc?export=download&id=abc"

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            DriveStorage()


# ─── Local ───────────────────────────────────────────────────────

class TestLocalStorage:
    @pytest.mark.asyncio
    async def test_find_hit(self, tmp_path):
        (tmp_path / "reports").mkdir()
        (tmp_path / "reports" / "27122025.png").write_bytes(b"\x89PNG")
        store = LocalStorage(tmp_path)
        item = await store.find("reports", "27122025.png")
        assert item.name == "27122025.png"
        assert store.public_url(item).startswith("file://")

    @pytest.mark.asyncio
    async def test_find_miss(self, tmp_path):
        assert await LocalStorage(tmp_path).find("reports", "x.png") is None

    @pytest.mark.asyncio
    async def test_directory_is_not_an_item(self, tmp_path):
        (tmp_path / "reports" / "sub").mkdir(parents=True)
        assert await LocalStorage(tmp_path).find("reports", "sub") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scope,name", [
        ("reports", "../secret"),
        ("..", "x.png"),
        ("reports", ".."),
        ("a/b", "x.png"),
    ])
    async def test_path_traversal_rejected(self, tmp_path, scope, name):
        with pytest.raises(StorageError):
            await LocalStorage(tmp_path).find(scope, name)


# ─── Factory ─────────────────────────────────────────────────────

def _storage_config(**kw):
    defaults = dict(storage_type="gdrive", storage_credentials_env="TEST_DRIVE_KEY",
                    storage_timeout=30.0, storage_root=None)
    defaults.update(kw)
    return SimpleNamespace(**defaults)


class TestCreateStorage:
    def test_local(self, tmp_path):
        store = create_storage(_storage_config(storage_type="local", storage_root=tmp_path))
        assert isinstance(store, LocalStorage)

    def test_gdrive_missing_key(self, monkeypatch):
        monkeypatch.delenv("TEST_DRIVE_KEY", raising=False)
        with pytest.raises(ValueError, match="TEST_DRIVE_KEY"):
            create_storage(_storage_config())

    def test_gdrive_invalid_json(self, monkeypatch):
        monkeypatch.setenv("TEST_DRIVE_KEY", "{not json")
        with pytest.raises(ValueError, match="not valid JSON"):
            create_storage(_storage_config())

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown storage"):
            create_storage(_storage_config(storage_type="ftp"))

    def test_gdrive_key_is_json_object(self, monkeypatch):
        # Service account parsing happens inside google-auth; a bogus key fails there
        monkeypatch.setenv("TEST_DRIVE_KEY", json.dumps({"type": "service_account"}))
        with pytest.raises(ValueError):
            create_storage(_storage_config())

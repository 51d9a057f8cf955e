"""Google Drive storage via the Drive v3 REST API.

Auth: service account (google-auth), read-only scope, token refreshed in
a worker thread. Lookups: files.list (httpx async) by exact name inside
one parent folder. Items are shared as direct-download URLs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import google.auth.exceptions
import google.auth.transport.requests
import httpx
from google.oauth2 import service_account

from . import StorageError, StorageItem

log = logging.getLogger(__name__)

_FILES_URL = "https://www.googleapis.com/drive/v3/files"
_SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]
_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={id}"


def _quote(value: str) -> str:
    """Escape a value for a Drive query string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_query(folder_id: str, name: str) -> str:
    return (
        f"'{_quote(folder_id)}' in parents"
        f" and name='{_quote(name)}' and trashed=false"
    )


class DriveStorage:
    def __init__(
        self,
        credentials_info: dict | None = None,
        credentials: Any = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        if credentials is None:
            if not credentials_info:
                raise ValueError("DriveStorage needs credentials_info or credentials")
            credentials = service_account.Credentials.from_service_account_info(
                credentials_info, scopes=_SCOPES,
            )
        self._credentials = credentials
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def _token(self) -> str:
        if not self._credentials.valid:
            try:
                await asyncio.to_thread(
                    self._credentials.refresh, google.auth.transport.requests.Request(),
                )
            except google.auth.exceptions.GoogleAuthError as e:
                raise StorageError(f"Drive auth failed: {e}") from e
            log.debug("Drive access token refreshed")
        return self._credentials.token

    async def find(self, scope_id: str, name: str) -> StorageItem | None:
        """Return the file called exactly name in folder scope_id, if any."""
        token = await self._token()
        client = await self._get_client()
        try:
            resp = await client.get(
                _FILES_URL,
                params={
                    "q": build_query(scope_id, name),
                    "fields": "files(id,name)",
                    "pageSize": 1,
                    "supportsAllDrives": "true",
                    "includeItemsFromAllDrives": "true",
                },
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StorageError(f"Drive lookup failed for {name!r}: {e}") from e

        files = data.get("files") or []
        if not files:
            log.debug("Drive: %s not found in %s", name, scope_id)
            return None
        first = files[0]
        if not first.get("id"):
            raise StorageError(f"Drive returned an item without id for {name!r}")
        return StorageItem(id=first["id"], name=first.get("name", name))

    def public_url(self, item: StorageItem) -> str:
        return _DOWNLOAD_URL.format(id=item.id)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

"""Storage interface and shared types.

Reports live as named files inside a collection scope (a Drive folder, a
local directory). Lookups are by exact name and return zero or one item.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from config import Config


class StorageError(Exception):
    """Raised when the storage backend cannot answer a lookup."""


@dataclass(frozen=True)
class StorageItem:
    id: str
    name: str


class Storage(Protocol):
    async def find(self, scope_id: str, name: str) -> StorageItem | None: ...
    def public_url(self, item: StorageItem) -> str: ...
    async def close(self) -> None: ...


def create_storage(config: Config) -> Storage:
    """Factory: create storage backend from config."""
    st_type = config.storage_type

    if st_type == "gdrive":
        from .drive import DriveStorage
        env_var = config.storage_credentials_env
        raw = os.environ.get(env_var, "")
        if not raw:
            raise ValueError(f"Drive service account key not found in env var: {env_var}")
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Drive service account key in {env_var} is not valid JSON") from e
        return DriveStorage(credentials_info=info, timeout=config.storage_timeout)
    if st_type == "local":
        from .local import LocalStorage
        return LocalStorage(config.storage_root)
    raise ValueError(f"Unknown storage type: {st_type!r}")

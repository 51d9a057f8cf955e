"""Local directory storage — one subdirectory per scope.

Used with the CLI channel and for running without Drive credentials.
"""

from __future__ import annotations

import logging
from pathlib import Path

from . import StorageError, StorageItem

log = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()

    async def find(self, scope_id: str, name: str) -> StorageItem | None:
        for part in (scope_id, name):
            if Path(part).name != part or part in ("", ".", ".."):
                raise StorageError(f"Invalid storage path: {scope_id}/{name}")
        path = self.root / scope_id / name
        if not path.is_file():
            return None
        return StorageItem(id=str(path), name=name)

    def public_url(self, item: StorageItem) -> str:
        return Path(item.id).as_uri()

    async def close(self) -> None:
        pass

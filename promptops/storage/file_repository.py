"""JSON file repository: <directory>/<namespace>/<key>.json"""

import asyncio
import json
from pathlib import Path
from typing import Any, List, Optional

import structlog

from promptops.core.exceptions import StorageError
from promptops.storage.repository import Namespace

logger = structlog.get_logger(__name__)


class FileRepository:
    """Stores each value as a pretty-printed JSON document"""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, namespace: Namespace, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid key: {key!r}", namespace=namespace.value, key=key)
        return self.directory / namespace.value / f"{key}.json"

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        path = self._path(namespace, key)
        try:
            return await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path}: {e}", namespace=namespace.value, key=key) from e

    async def set(self, namespace: Namespace, key: str, value: Any) -> None:
        path = self._path(namespace, key)
        try:
            await asyncio.to_thread(self._write, path, value)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {path}: {e}", namespace=namespace.value, key=key) from e

    async def delete(self, namespace: Namespace, key: str) -> bool:
        path = self._path(namespace, key)
        try:
            return await asyncio.to_thread(self._unlink, path)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", namespace=namespace.value, key=key) from e

    async def list_keys(self, namespace: Namespace) -> List[str]:
        folder = self.directory / namespace.value
        try:
            return await asyncio.to_thread(self._list, folder)
        except OSError as e:
            raise StorageError(f"Failed to list {folder}: {e}", namespace=namespace.value) from e

    async def close(self) -> None:
        return None

    @staticmethod
    def _list(folder: Path) -> List[str]:
        if not folder.exists():
            return []
        return sorted(path.stem for path in folder.glob("*.json"))

    @staticmethod
    def _read(path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    @staticmethod
    def _write(path: Path, value: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(value, handle, indent=2)
        tmp_path.replace(path)
        logger.debug("Wrote document", path=str(path))

    @staticmethod
    def _unlink(path: Path) -> bool:
        if not path.exists():
            return False
        path.unlink()
        return True

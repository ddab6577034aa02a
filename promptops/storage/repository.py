"""
Repository - Persistence port for templates, versions and executions

Values crossing this boundary are plain JSON-compatible Python values.
"""

from copy import deepcopy
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from promptops.core.config import Settings


class Namespace(str, Enum):
    TEMPLATES = "templates"
    VERSIONS = "versions"
    EXECUTIONS = "executions"


class Repository(Protocol):
    """Key/value store over the three namespaces"""

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        """Return the stored value or None"""
        ...

    async def set(self, namespace: Namespace, key: str, value: Any) -> None:
        """Store a value, replacing any previous one"""
        ...

    async def delete(self, namespace: Namespace, key: str) -> bool:
        """Remove a value; returns whether it existed"""
        ...

    async def list_keys(self, namespace: Namespace) -> List[str]:
        """Keys present in a namespace"""
        ...

    async def close(self) -> None:
        ...


class InMemoryRepository:
    """In-process repository; values are copied in and out"""

    def __init__(self):
        self._data: Dict[Namespace, Dict[str, Any]] = {namespace: {} for namespace in Namespace}

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        return deepcopy(self._data[namespace].get(key))

    async def set(self, namespace: Namespace, key: str, value: Any) -> None:
        self._data[namespace][key] = deepcopy(value)

    async def delete(self, namespace: Namespace, key: str) -> bool:
        return self._data[namespace].pop(key, None) is not None

    async def list_keys(self, namespace: Namespace) -> List[str]:
        return list(self._data[namespace])

    async def close(self) -> None:
        return None


def create_repository(settings: Settings) -> Repository:
    """Build the repository selected by `storage_backend`"""
    if settings.storage_backend == "file":
        from promptops.storage.file_repository import FileRepository

        return FileRepository(settings.storage_directory)

    if settings.storage_backend == "redis":
        from promptops.storage.redis_repository import RedisRepository

        return RedisRepository(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
        )

    return InMemoryRepository()

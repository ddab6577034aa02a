"""
Redis Repository - Shared persistence for template state

Keys: promptops:<namespace>:<key>, values JSON-encoded.
"""

import json
from typing import Any, List, Optional

import redis.asyncio as redis
import structlog
from redis.asyncio import Redis

from promptops.core.exceptions import StorageError
from promptops.storage.repository import Namespace

logger = structlog.get_logger(__name__)


class RedisRepository:
    """Redis-backed repository"""

    KEY_PREFIX = "promptops"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 4,
        password: Optional[str] = None,
        client: Optional[Redis] = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.client: Optional[Redis] = client

    async def connect(self):
        """Connect to Redis"""
        if self.client is None:
            self.client = redis.from_url(
                f"redis://{self.host}:{self.port}/{self.db}",
                password=self.password,
                decode_responses=True,
            )
        try:
            await self.client.ping()
        except Exception as e:
            raise StorageError(f"Redis connection failed: {e}") from e
        logger.info("Connected to Redis", host=self.host, port=self.port, db=self.db)

    async def close(self):
        """Disconnect"""
        if self.client:
            await self.client.aclose()
            self.client = None

    def key(self, namespace: Namespace, key: str) -> str:
        return f"{self.KEY_PREFIX}:{namespace.value}:{key}"

    def _require_client(self) -> Redis:
        if self.client is None:
            raise StorageError("Redis repository is not connected")
        return self.client

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        client = self._require_client()
        try:
            data = await client.get(self.key(namespace, key))
        except Exception as e:
            raise StorageError(f"Redis get failed: {e}", namespace=namespace.value, key=key) from e
        if data is None:
            return None
        return json.loads(data)

    async def set(self, namespace: Namespace, key: str, value: Any) -> None:
        client = self._require_client()
        try:
            await client.set(self.key(namespace, key), json.dumps(value))
        except Exception as e:
            raise StorageError(f"Redis set failed: {e}", namespace=namespace.value, key=key) from e

    async def delete(self, namespace: Namespace, key: str) -> bool:
        client = self._require_client()
        try:
            removed = await client.delete(self.key(namespace, key))
        except Exception as e:
            raise StorageError(f"Redis delete failed: {e}", namespace=namespace.value, key=key) from e
        return bool(removed)

    async def list_keys(self, namespace: Namespace) -> List[str]:
        client = self._require_client()
        prefix = f"{self.KEY_PREFIX}:{namespace.value}:"
        keys = []
        try:
            async for key in client.scan_iter(match=f"{prefix}*"):
                keys.append(key[len(prefix):])
        except Exception as e:
            raise StorageError(f"Redis scan failed: {e}", namespace=namespace.value) from e
        return sorted(keys)

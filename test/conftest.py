import asyncio
import hashlib
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from pydantic import SecretStr

from unistore.core.cache_manager import CacheManager
from unistore.core.session_manager import SessionManager
from unistore.core.storage_context import StorageContext
from unistore.storage.cloud_storage import (
    NotFoundError,
    ObjectInfo,
    StorageCredentials,
    StorageDriver,
    StorageKind,
    StorageTarget,
)
from unistore.storage.path_translator import PathTranslator
from unistore.utils.env_config import StorageSettings


class InMemoryDriver(StorageDriver):
    """Dict-backed driver with per-operation failure injection."""

    kind = StorageKind.S3_COMPATIBLE

    def __init__(self, target: StorageTarget):
        super().__init__(target, timeout=1.0)
        self.objects: dict[str, ObjectInfo] = {}
        self.data: dict[str, bytes] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.hooks: dict[str, Callable[[str], None]] = {}
        self.connected = False

    def fail(self, operation: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls of ``operation``."""
        self.failures[operation].extend(errors)

    def _enter(self, operation: str, key: str = "") -> None:
        self.calls[operation] += 1
        if self.failures[operation]:
            raise self.failures[operation].pop(0)
        if operation in self.hooks:
            self.hooks[operation](key)

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def put_object(self, key, data, content_type=None, metadata=None) -> ObjectInfo:
        self._enter("put_object", key)
        # Yield so concurrent callers interleave.
        await asyncio.sleep(0)
        now = datetime.now(timezone.utc)
        created = self.objects[key].created if key in self.objects else now
        self.data[key] = bytes(data)
        self.objects[key] = ObjectInfo(
            key=key,
            size=len(data),
            content_type=content_type or "application/octet-stream",
            last_modified=now,
            created=created,
            etag=hashlib.md5(data).hexdigest(),
            metadata=metadata or {},
        )
        return self.objects[key]

    async def get_object(self, key: str) -> bytes:
        self._enter("get_object", key)
        if key not in self.data:
            raise NotFoundError(f"missing {key}")
        return self.data[key]

    async def list_objects(self, prefix: str = "", limit: int | None = None) -> list[ObjectInfo]:
        self._enter("list_objects", prefix)
        found = [self.objects[k] for k in sorted(self.objects) if k.startswith(prefix)]
        return found[:limit] if limit else found

    async def delete_object(self, key: str) -> None:
        self._enter("delete_object", key)
        self.objects.pop(key, None)
        self.data.pop(key, None)

    async def copy_object(self, source_key: str, destination_key: str) -> ObjectInfo:
        self._enter("copy_object", source_key)
        if source_key not in self.data:
            raise NotFoundError(f"missing {source_key}")
        source = self.objects[source_key]
        return await self.put_object(destination_key, self.data[source_key], source.content_type)

    async def object_exists(self, key: str) -> bool:
        self._enter("object_exists", key)
        return key in self.objects

    async def get_object_info(self, key: str) -> ObjectInfo:
        self._enter("get_object_info", key)
        if key not in self.objects:
            raise NotFoundError(f"missing {key}")
        return self.objects[key]


@pytest.fixture
def settings() -> StorageSettings:
    return StorageSettings(
        connection_string=None,
        root_prefix="",
        backend_timeout=1.0,
        bulk_retry_attempts=2,
        retry_backoff=0.0,
        retry_backoff_max=0.0,
        cache_ttl=5.0,
        upload_idle_timeout=900,
        session_sweep_interval=60.0,
        public_base_url=None,
        cdn_api_token=None,
        cdn_zone_id=None,
    )


@pytest.fixture
def s3_target() -> StorageTarget:
    return StorageTarget(
        kind=StorageKind.S3_COMPATIBLE,
        credentials=StorageCredentials(access_key_id="test-key-id", secret_access_key=SecretStr("test-secret")),
        container="test-bucket",
        region="us-east-1",
    )


@pytest.fixture
def blob_target() -> StorageTarget:
    return StorageTarget(
        kind=StorageKind.FLAT_BLOB,
        credentials=StorageCredentials(account_name="testaccount", account_key=SecretStr("dGVzdA==")),
        container="$web",
    )


@pytest.fixture
def driver(s3_target: StorageTarget) -> InMemoryDriver:
    return InMemoryDriver(s3_target)


@pytest.fixture
def translator() -> PathTranslator:
    return PathTranslator()


@pytest.fixture
def cache_manager() -> CacheManager:
    return CacheManager(ttl_seconds=5.0, max_entries=100)


@pytest.fixture
def session_manager() -> SessionManager:
    return SessionManager()


@pytest.fixture
async def context(driver: InMemoryDriver, settings: StorageSettings) -> AsyncGenerator[StorageContext]:
    ctx = StorageContext(driver, settings=settings)
    await ctx.connect()
    yield ctx
    await ctx.disconnect()


@pytest.fixture
def seed(driver: InMemoryDriver) -> Callable[..., Any]:
    def _seed(*keys: str, data: bytes = b"data") -> None:
        for key in keys:
            payload = b"" if key.endswith("/") else data
            driver.data[key] = payload
            driver.objects[key] = ObjectInfo(
                key=key,
                size=len(payload),
                content_type="application/octet-stream",
                last_modified=datetime.now(timezone.utc),
                etag=hashlib.md5(payload).hexdigest(),
            )

    return _seed

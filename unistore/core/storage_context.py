"""
Unified storage facade.

``StorageContext`` resolves a driver from a connection descriptor and exposes
one hierarchical file API over it: metadata lookups through a short-TTL
cache, listings with synthetic directories, direct and chunked writes, and
folder-level copy, move and delete emulated over key prefixes.

Folder-level operations are best-effort bulk operations, not atomic: they
list the keys under a prefix once and then process each key independently,
so a concurrent writer under the same prefix may or may not be included.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import quote

import aiofiles
import pydantic
import structlog

from ..cdn.cloudflare import CloudflareCdnService
from ..factories.storage_factory import create_driver, resolve
from ..storage.cloud_storage import (
    BackendTransientError,
    BulkOperationResult,
    DirectoryEntry,
    InvalidPathError,
    NotFoundError,
    PartialBulkFailure,
    StorageDriver,
    StorageError,
    StorageTarget,
    ValidationError,
)
from ..storage.file_utils import FileUtils, file_utils
from ..storage.path_translator import PathTranslator
from ..utils.env_config import StorageSettings, get_settings
from .cache_manager import CacheEntry, CacheManager
from .chunk_assembler import ChunkAssembler, UploadChunkDescriptor
from .retry import call_with_retry
from .session_manager import SessionManager

logger = structlog.get_logger(__name__)

FOLDER_CONTENT_TYPE = "application/x-directory"
CDN_PURGE_BATCH = 30


class DirectoryListing:
    """
    Point-in-time directory listing.

    Each iteration (or ``await``) performs one fresh listing call, so the
    same listing object can be consumed more than once.
    """

    def __init__(self, fetch: Callable[[], Awaitable[List[DirectoryEntry]]]):
        self._fetch = fetch

    def __aiter__(self) -> AsyncIterator[DirectoryEntry]:
        return self._iterate()

    def __await__(self):
        return self._fetch().__await__()

    async def to_list(self) -> List[DirectoryEntry]:
        return await self._fetch()

    async def _iterate(self) -> AsyncIterator[DirectoryEntry]:
        for entry in await self._fetch():
            yield entry


class StorageContext:
    """Single entry point for file operations against the configured backend."""

    def __init__(
        self,
        driver: StorageDriver,
        settings: Optional[StorageSettings] = None,
        cache: Optional[CacheManager] = None,
        sessions: Optional[SessionManager] = None,
        translator: Optional[PathTranslator] = None,
        cdn: Optional[CloudflareCdnService] = None,
        utils: FileUtils = file_utils,
    ):
        self.settings = settings or get_settings()
        self.driver = driver
        self.translator = translator or PathTranslator(self.settings.root_prefix)
        self.cache = cache or CacheManager(
            ttl_seconds=self.settings.cache_ttl, max_entries=self.settings.cache_max_entries
        )
        self.sessions = sessions or SessionManager(
            idle_timeout=timedelta(seconds=self.settings.upload_idle_timeout),
            sweep_interval=self.settings.session_sweep_interval,
        )
        self.assembler = ChunkAssembler(self.sessions, self.driver, self.translator)
        self.cdn = cdn
        self.file_utils = utils
        self.is_connected = False

    @classmethod
    def from_connection_string(
        cls,
        descriptor: Optional[str] = None,
        settings: Optional[StorageSettings] = None,
        **kwargs: Any,
    ) -> "StorageContext":
        """Build a context from a connection descriptor (defaults to the configured one)."""
        settings = settings or get_settings()
        target = cls.resolve(descriptor or settings.connection_string or "")
        if "cdn" not in kwargs and settings.cdn_enabled:
            kwargs["cdn"] = CloudflareCdnService(**settings.get_cdn_config())
        return cls(create_driver(target, settings), settings=settings, **kwargs)

    @staticmethod
    def resolve(descriptor: str) -> StorageTarget:
        """Classify a connection descriptor into a storage target."""
        return resolve(descriptor)

    @property
    def target(self) -> StorageTarget:
        return self.driver.target

    async def connect(self) -> None:
        """Connect the driver and start the idle upload sweep."""
        if self.is_connected:
            return
        await self.driver.connect()
        self.sessions.start_cleanup()
        self.is_connected = True
        logger.info("Storage context connected", kind=self.target.kind.value, container=self.target.container)

    async def disconnect(self) -> None:
        """Stop background work and release backend connections."""
        await self.sessions.shutdown()
        await self.driver.disconnect()
        if self.cdn is not None:
            await self.cdn.close()
        self.is_connected = False
        logger.info("Storage context disconnected")

    async def __aenter__(self) -> "StorageContext":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # Metadata

    async def exists(self, path: str) -> bool:
        """Whether a file or folder exists at ``path``; cache-first."""
        normalized = self.translator.normalize(path)
        if not normalized:
            return True
        entry = self.cache.get(normalized) or await self._fetch(normalized)
        return entry.exists

    async def get_metadata(self, path: str) -> DirectoryEntry:
        """Metadata for a file or folder; cache-first."""
        normalized = self.translator.normalize(path)
        if not normalized:
            return self.file_utils.directory_entry("")

        entry = self.cache.get(normalized) or await self._fetch(normalized)
        if entry.metadata is None:
            raise NotFoundError(f"Path not found: {normalized}", error_code="NOT_FOUND")
        return entry.metadata

    def list(self, path: str = "", recursive: bool = False) -> DirectoryListing:
        """
        List a folder.

        Non-recursive listings return immediate children only; nested keys
        collapse into synthetic directory entries. Recursive listings return
        every file plus every directory implied by the keys.
        """
        normalized = self.translator.normalize(path)
        return DirectoryListing(lambda: self._list_entries(normalized, recursive))

    # Reads and writes

    async def read(self, path: str) -> bytes:
        """Download a file's bytes."""
        return await self.driver.get_object(self.translator.to_key(path))

    async def download(self, path: str, local_path: Union[str, Path]) -> Path:
        """Download a file to the local filesystem."""
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        data = await self.read(path)
        async with aiofiles.open(local_path, "wb") as f:
            await f.write(data)
        return local_path

    async def write(self, path: str, data: bytes, content_type: Optional[str] = None) -> DirectoryEntry:
        """Write a whole file in one call."""
        normalized = self.translator.normalize(path, allow_empty=False)
        content_type = content_type or self.file_utils.get_content_type(normalized)
        info = await self.driver.put_object(self.translator.to_key(normalized), data, content_type=content_type)
        self._invalidate(normalized)
        await self._purge_cdn([normalized])
        logger.info("File written", path=normalized, size=info.size)
        return self.file_utils.file_entry(normalized, info)

    async def upload_file(
        self, local_path: Union[str, Path], path: str, content_type: Optional[str] = None
    ) -> DirectoryEntry:
        """Upload a local file."""
        local_path = Path(local_path)
        if not local_path.is_file():
            raise NotFoundError(f"Local file not found: {local_path}", error_code="LOCAL_FILE_NOT_FOUND")
        async with aiofiles.open(local_path, "rb") as f:
            data = await f.read()
        return await self.write(path, data, content_type or self.file_utils.get_content_type(local_path.name))

    async def write_chunk(
        self, descriptor: Union[UploadChunkDescriptor, dict], data: bytes
    ) -> tuple[bool, Optional[DirectoryEntry]]:
        """
        Deliver one chunk of a chunked upload.

        Returns:
            ``(done, entry)``; ``entry`` describes the committed file once the
            last missing chunk has arrived
        """
        if not isinstance(descriptor, UploadChunkDescriptor):
            try:
                descriptor = UploadChunkDescriptor.model_validate(descriptor)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid upload chunk descriptor: {e}", error_code="INVALID_CHUNK")

        done, info = await self.assembler.add_chunk(descriptor, data)
        if not done:
            return False, None

        normalized = self.translator.normalize(descriptor.relative_path, allow_empty=False)
        self._invalidate(normalized)
        await self._purge_cdn([normalized])
        return True, self.file_utils.file_entry(normalized, info) if info else None

    def abandon_upload(self, upload_id: str) -> bool:
        """Cancel a chunked upload and release its buffered chunks."""
        return self.assembler.abandon(upload_id)

    # Folder emulation

    async def create_folder(self, path: str) -> DirectoryEntry:
        """Create an empty, listable folder by writing a zero-byte marker object."""
        normalized = self.translator.normalize(path, allow_empty=False)
        info = await self.driver.put_object(
            self.translator.folder_key(normalized), b"", content_type=FOLDER_CONTENT_TYPE
        )
        self._invalidate(normalized)
        return self.file_utils.directory_entry(normalized, info)

    async def delete(self, path: str) -> None:
        """Delete a single file."""
        normalized = self.translator.normalize(path, allow_empty=False)
        key = self.translator.to_key(normalized)
        if not await self.driver.object_exists(key):
            raise NotFoundError(f"File not found: {normalized}", error_code="NOT_FOUND")
        await self.driver.delete_object(key)
        self._invalidate(normalized)
        await self._purge_cdn([normalized])

    async def delete_folder(self, path: str, cancel_event: Optional[asyncio.Event] = None) -> BulkOperationResult:
        """
        Recursively delete everything under a folder.

        Raises:
            PartialBulkFailure: Some keys failed or the operation was
                cancelled; already-deleted keys stay deleted
        """
        normalized = self.translator.normalize(path, allow_empty=False)
        objects = await self.driver.list_objects(self.translator.prefix_for(normalized))
        if not objects:
            raise NotFoundError(f"Folder not found: {normalized}", error_code="NOT_FOUND")

        # Files first, then markers deepest-first, so the folder stays listable until the end.
        keys = sorted(
            (obj.key for obj in objects),
            key=lambda k: (self.translator.is_folder_marker(k), -k.count("/"), k),
        )
        try:
            result = await self._run_bulk(
                keys, self._delete_key, f"delete folder {normalized}", key_of=lambda k: k, cancel_event=cancel_event
            )
        finally:
            self.cache.invalidate_prefix(normalized)
            self._invalidate(normalized)
        await self._purge_cdn(self._paths_of(result.succeeded))
        return result

    async def copy(
        self, source: str, destination: str, cancel_event: Optional[asyncio.Event] = None
    ) -> BulkOperationResult:
        """Copy a file, or every object under a folder, to a new path."""
        return await self._transfer(source, destination, cancel_event, move=False)

    async def move(
        self, source: str, destination: str, cancel_event: Optional[asyncio.Event] = None
    ) -> BulkOperationResult:
        """Move (copy then delete) a file or a folder to a new path."""
        return await self._transfer(source, destination, cancel_event, move=True)

    # Control plane

    async def toggle_static_website(self, enabled: bool) -> None:
        """Enable or disable static website hosting on the backend account."""
        await self.driver.toggle_static_website(
            enabled,
            index_document=self.settings.static_website_index_document,
            error_document=self.settings.static_website_error_document,
        )

    async def health_check(self) -> bool:
        return await self.driver.health_check()

    def public_url(self, path: str) -> Optional[str]:
        """Public URL of a file when a public base URL is configured."""
        if not self.settings.public_base_url:
            return None
        normalized = self.translator.normalize(path, allow_empty=False)
        return f"{self.settings.public_base_url.rstrip('/')}/{quote(normalized)}"

    # Private helper methods

    async def _fetch(self, path: str) -> CacheEntry:
        """Look a path up on the backend and fill the cache unless a write raced the lookup."""
        generation = self.cache.begin_lookup(path)
        try:
            metadata = await self._lookup(path)
            return self.cache.set(path, metadata, generation=generation)
        finally:
            self.cache.end_lookup(path)

    async def _lookup(self, path: str) -> Optional[DirectoryEntry]:
        """Resolve a path to a file entry, a synthetic folder entry or None."""
        key = self.translator.to_key(path)
        try:
            info = await self.driver.get_object_info(key)
            return self.file_utils.file_entry(path, info)
        except NotFoundError:
            pass

        children = await self.driver.list_objects(self.translator.prefix_for(path), limit=1)
        if children:
            marker = children[0] if children[0].key == self.translator.folder_key(path) else None
            return self.file_utils.directory_entry(path, marker)
        return None

    async def _list_entries(self, path: str, recursive: bool) -> List[DirectoryEntry]:
        prefix = self.translator.prefix_for(path)
        objects = await self.driver.list_objects(prefix)

        directories: dict[str, DirectoryEntry] = {}
        files: dict[str, DirectoryEntry] = {}
        for obj in objects:
            relative = obj.key[len(prefix):]
            if not relative.strip("/"):
                continue
            is_marker = self.translator.is_folder_marker(relative)
            parts = relative.strip("/").split("/")

            if recursive:
                for depth in range(1, len(parts)):
                    ancestor = self._join(path, parts[:depth])
                    directories.setdefault(ancestor, self.file_utils.directory_entry(ancestor))
                full_path = self._join(path, parts)
                if is_marker:
                    directories[full_path] = self.file_utils.directory_entry(full_path, obj)
                else:
                    files[full_path] = self.file_utils.file_entry(full_path, obj)
                continue

            child = self._join(path, parts[:1])
            if len(parts) == 1 and not is_marker:
                files[child] = self.file_utils.file_entry(child, obj)
            elif len(parts) == 1:
                directories[child] = self.file_utils.directory_entry(child, obj)
            else:
                directories.setdefault(child, self.file_utils.directory_entry(child))

        return [directories[p] for p in sorted(directories)] + [files[p] for p in sorted(files)]

    async def _transfer(
        self, source: str, destination: str, cancel_event: Optional[asyncio.Event], move: bool
    ) -> BulkOperationResult:
        src = self.translator.normalize(source, allow_empty=False)
        dst = self.translator.normalize(destination, allow_empty=False)
        verb = "move" if move else "copy"
        if src == dst:
            return BulkOperationResult()

        src_key = self.translator.to_key(src)
        if await self.driver.object_exists(src_key):
            # Single object: errors surface directly.
            try:
                await self.driver.copy_object(src_key, self.translator.to_key(dst))
                if move:
                    await self.driver.delete_object(src_key)
            finally:
                self._invalidate(dst)
                if move:
                    self._invalidate(src)
            await self._purge_cdn([src, dst] if move else [dst])
            logger.info(f"File {verb} completed", source=src, destination=dst)
            return BulkOperationResult(succeeded=[src_key])

        if dst.startswith(src + "/"):
            raise InvalidPathError(f"Cannot {verb} folder {src} into itself", error_code="RECURSIVE_TRANSFER")

        src_prefix = self.translator.prefix_for(src)
        dst_prefix = self.translator.prefix_for(dst)
        objects = await self.driver.list_objects(src_prefix)
        if not objects:
            raise NotFoundError(f"Path not found: {src}", error_code="NOT_FOUND")

        plan = [(obj.key, dst_prefix + obj.key[len(src_prefix):]) for obj in objects]

        async def step(pair: tuple[str, str]) -> None:
            await self.driver.copy_object(*pair)
            if move:
                await self._delete_key(pair[0])

        try:
            result = await self._run_bulk(
                plan, step, f"{verb} folder {src} to {dst}", key_of=lambda pair: pair[0], cancel_event=cancel_event
            )
        finally:
            self.cache.invalidate_prefix(dst)
            self._invalidate(dst)
            if move:
                self.cache.invalidate_prefix(src)
                self._invalidate(src)

        purged = self._paths_of(result.succeeded)
        if move:
            purged += [dst + path[len(src):] for path in purged]
        await self._purge_cdn(purged)
        return result

    async def _delete_key(self, key: str) -> None:
        try:
            await self.driver.delete_object(key)
        except NotFoundError:
            # Already gone, e.g. removed by another actor after the listing.
            pass

    async def _run_bulk(
        self,
        items: List[Any],
        step: Callable[[Any], Awaitable[None]],
        operation: str,
        key_of: Callable[[Any], str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkOperationResult:
        """
        Apply ``step`` to each item independently.

        Transient errors are retried per item, then recorded as failures
        without stopping the batch. Any other storage error is recorded and
        stops the batch, leaving the rest pending. The cancel event is
        checked between items.
        """
        result = BulkOperationResult()
        for index, item in enumerate(items):
            key = key_of(item)
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.pending = [key_of(rest) for rest in items[index:]]
                break
            try:
                await call_with_retry(
                    lambda item=item: step(item),
                    max_retries=self.settings.bulk_retry_attempts,
                    backoff_factor=self.settings.retry_backoff,
                    backoff_max=self.settings.retry_backoff_max,
                    operation=operation,
                )
                result.succeeded.append(key)
            except (BackendTransientError, NotFoundError) as e:
                result.failed[key] = str(e)
            except StorageError as e:
                result.failed[key] = str(e)
                result.pending = [key_of(rest) for rest in items[index + 1:]]
                break

        logger.info(
            "Bulk operation finished",
            operation=operation,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            pending=len(result.pending),
            cancelled=result.cancelled,
        )
        if not result.is_complete:
            raise PartialBulkFailure(
                f"{operation}: processed {len(result.succeeded)} of {result.total} objects",
                result,
            )
        return result

    def _invalidate(self, path: str) -> None:
        """Drop cached metadata for a path and every ancestor folder."""
        self.cache.invalidate(path, *self.translator.ancestors(path))

    def _paths_of(self, keys: List[str]) -> List[str]:
        return [self.translator.from_key(key) for key in keys if not self.translator.is_folder_marker(key)]

    async def _purge_cdn(self, paths: List[str]) -> None:
        if self.cdn is None or not self.settings.public_base_url or not paths:
            return
        urls = [self.public_url(path) for path in paths if path]
        for start in range(0, len(urls), CDN_PURGE_BATCH):
            if not await self.cdn.purge_by_urls(*urls[start:start + CDN_PURGE_BATCH]):
                logger.warning("CDN purge failed", urls=len(urls[start:start + CDN_PURGE_BATCH]))

    @staticmethod
    def _join(base: str, parts: List[str]) -> str:
        tail = "/".join(parts)
        return f"{base}/{tail}" if base else tail

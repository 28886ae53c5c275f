"""
Abstract object-storage driver interface for the unified storage layer.

This module defines the driver base class, the data models shared by all
backends and the storage error hierarchy. Drivers only know about flat
object keys; folder semantics live above them in the storage context.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

logger = logging.getLogger(__name__)


class StorageKind(str, Enum):
    """Backend families a connection descriptor can select."""

    FLAT_BLOB = "flat_blob"
    S3_COMPATIBLE = "s3_compatible"


class StorageCredentials(BaseModel):
    """Credentials resolved from a connection descriptor."""

    model_config = ConfigDict(frozen=True)

    # Flat-blob store
    account_name: str | None = None
    account_key: SecretStr | None = None
    blob_endpoint: str | None = None
    endpoint_suffix: str = "core.windows.net"
    endpoint_protocol: str = "https"
    use_managed_identity: bool = False

    # S3-compatible store
    access_key_id: str | None = None
    secret_access_key: SecretStr | None = None
    endpoint_url: str | None = None

    @property
    def has_account_key(self) -> bool:
        return self.account_key is not None and not self.use_managed_identity


class StorageTarget(BaseModel):
    """Immutable backend selection built once from a connection descriptor."""

    model_config = ConfigDict(frozen=True)

    kind: StorageKind
    credentials: StorageCredentials
    container: str = Field(min_length=1)
    region: str | None = None


@dataclass
class ObjectInfo:
    """Metadata about a single stored object, as reported by a driver."""

    key: str
    size: int
    content_type: str
    last_modified: datetime | None
    etag: str
    created: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class DirectoryEntry:
    """A file or synthetic directory in the emulated hierarchy."""

    name: str
    path: str
    is_directory: bool
    size_bytes: int = 0
    created: datetime | None = None
    modified: datetime | None = None
    content_type: str | None = None
    extension: str | None = None
    entity_tag: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the listing contract consumed by file-browsing clients."""
        return {
            "name": self.name,
            "path": self.path,
            "isDirectory": self.is_directory,
            "sizeBytes": self.size_bytes,
            "created": self.created.isoformat() if self.created else None,
            "modified": self.modified.isoformat() if self.modified else None,
            "contentType": self.content_type,
            "extension": self.extension,
            "entityTag": self.entity_tag,
        }


class StorageError(Exception):
    """Base exception for storage operations."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(StorageError):
    """Connection descriptor is unparseable, ambiguous or incomplete."""

    pass


class NotFoundError(StorageError):
    """Object or path is absent."""

    pass


class InvalidPathError(StorageError):
    """Path is malformed or tries to escape the storage root."""

    pass


class UnsupportedOperationError(StorageError):
    """Operation is not meaningful for the resolved driver."""

    pass


class InsufficientCredentialError(StorageError):
    """Control-plane call needs stronger credentials than configured."""

    pass


class StoragePermissionError(StorageError):
    """Backend denied access."""

    pass


class BackendTransientError(StorageError):
    """Timeout, throttling or transient network failure; safe to retry."""

    pass


class ValidationError(StorageError):
    """Request payload failed validation."""

    pass


@dataclass
class BulkOperationResult:
    """Outcome of a multi-object copy, move or delete."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def is_complete(self) -> bool:
        return not self.failed and not self.pending and not self.cancelled

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.pending)


class PartialBulkFailure(StorageError):
    """A bulk operation stopped or failed part-way through its keys."""

    def __init__(self, message: str, result: BulkOperationResult):
        super().__init__(
            message,
            error_code="PARTIAL_BULK_FAILURE",
            details={
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "pending": len(result.pending),
                "cancelled": result.cancelled,
            },
        )
        self.result = result


class StorageDriver(ABC):
    """
    Abstract base class for object-storage drivers.

    A driver exposes primitive operations over a flat key namespace in a
    single container or bucket. Blocking SDK calls are pushed to the
    default executor and bounded by ``timeout`` seconds.
    """

    kind: StorageKind

    def __init__(self, target: StorageTarget, timeout: float = 30.0):
        """Initialize the driver with its resolved target."""
        self.target = target
        self.timeout = timeout

    @property
    def container(self) -> str:
        return self.target.container

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection to the storage service."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the storage service."""
        pass

    @abstractmethod
    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> ObjectInfo:
        """
        Store bytes under ``key``, replacing any existing object.

        Args:
            key: Object key
            data: Object content
            content_type: MIME type of the content
            metadata: Additional metadata to store with the object

        Returns:
            ObjectInfo for the stored object
        """
        pass

    @abstractmethod
    async def get_object(self, key: str) -> bytes:
        """Download object content. Raises NotFoundError if absent."""
        pass

    @abstractmethod
    async def list_objects(self, prefix: str = "", limit: int | None = None) -> list[ObjectInfo]:
        """
        List objects whose key starts with ``prefix``.

        Pages are fetched internally and concatenated; the result is one
        point-in-time listing.

        Args:
            prefix: Key prefix to filter objects
            limit: Maximum number of objects to return

        Returns:
            List of ObjectInfo objects
        """
        pass

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete an object."""
        pass

    @abstractmethod
    async def copy_object(self, source_key: str, destination_key: str) -> ObjectInfo:
        """Server-side copy of one object inside the container."""
        pass

    @abstractmethod
    async def object_exists(self, key: str) -> bool:
        """Check whether an object exists."""
        pass

    @abstractmethod
    async def get_object_info(self, key: str) -> ObjectInfo:
        """Get object metadata. Raises NotFoundError if absent."""
        pass

    async def toggle_static_website(
        self,
        enabled: bool,
        index_document: str = "index.html",
        error_document: str = "404.html",
    ) -> None:
        """Enable or disable static website hosting for the account."""
        raise UnsupportedOperationError(
            f"Static website hosting is not supported by the {self.kind.value} driver",
            error_code="UNSUPPORTED_OPERATION",
        )

    async def health_check(self) -> bool:
        """
        Check if the storage service is accessible.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            await self.list_objects(limit=1)
            return True
        except StorageError as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    async def _run_sync(self, func, *args, **kwargs):
        """Run a blocking SDK call in the executor, bounded by the driver timeout."""
        loop = asyncio.get_event_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: func(*args, **kwargs)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise BackendTransientError(
                f"Storage call timed out after {self.timeout}s",
                error_code="TIMEOUT",
            )


__all__ = [
    "StorageDriver",
    "StorageKind",
    "StorageCredentials",
    "StorageTarget",
    "ObjectInfo",
    "DirectoryEntry",
    "BulkOperationResult",
    "StorageError",
    "ConfigurationError",
    "NotFoundError",
    "InvalidPathError",
    "UnsupportedOperationError",
    "InsufficientCredentialError",
    "StoragePermissionError",
    "BackendTransientError",
    "ValidationError",
    "PartialBulkFailure",
]

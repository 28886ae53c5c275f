"""
Unified object storage with hierarchical folder emulation.

One API over a flat-key blob store and S3-compatible stores: driver
selection from a connection descriptor, chunked upload reassembly, folder
copy/move/delete over key prefixes and a short-lived metadata cache.
"""

from .core.chunk_assembler import UploadChunkDescriptor
from .core.storage_context import DirectoryListing, StorageContext
from .storage import (
    BackendTransientError,
    BulkOperationResult,
    ConfigurationError,
    DirectoryEntry,
    InsufficientCredentialError,
    InvalidPathError,
    NotFoundError,
    PartialBulkFailure,
    StorageError,
    StorageKind,
    StorageTarget,
    UnsupportedOperationError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "StorageContext",
    "DirectoryListing",
    "UploadChunkDescriptor",
    "StorageKind",
    "StorageTarget",
    "DirectoryEntry",
    "BulkOperationResult",
    "StorageError",
    "ConfigurationError",
    "NotFoundError",
    "InvalidPathError",
    "UnsupportedOperationError",
    "InsufficientCredentialError",
    "BackendTransientError",
    "ValidationError",
    "PartialBulkFailure",
]

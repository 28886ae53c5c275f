"""
Object-storage drivers and folder emulation for the unified storage layer.

Two backend families are supported behind one driver interface: a flat-key
blob store (Azure Blob Storage) and any S3-compatible store. Folder
semantics are emulated over key prefixes by the path translator.
"""

from .blob_storage import BlobStorage
from .cloud_storage import (
    BackendTransientError,
    BulkOperationResult,
    ConfigurationError,
    DirectoryEntry,
    InsufficientCredentialError,
    InvalidPathError,
    NotFoundError,
    ObjectInfo,
    PartialBulkFailure,
    StorageCredentials,
    StorageDriver,
    StorageError,
    StorageKind,
    StoragePermissionError,
    StorageTarget,
    UnsupportedOperationError,
    ValidationError,
)
from .file_utils import FileUtils, file_utils
from .path_translator import PathTranslator
from .s3_storage import S3Storage

__all__ = [
    # Abstract interfaces and base classes
    "StorageDriver",
    # Concrete implementations
    "BlobStorage",
    "S3Storage",
    # Data models and enums
    "StorageKind",
    "StorageCredentials",
    "StorageTarget",
    "ObjectInfo",
    "DirectoryEntry",
    "BulkOperationResult",
    # Exceptions
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
    # Utilities
    "PathTranslator",
    "FileUtils",
    "file_utils",
]

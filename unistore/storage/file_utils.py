"""
File utility functions for storage listings and uploads.

This module provides MIME type detection, extension extraction and the
conversion of driver object metadata into directory entries.
"""

import mimetypes
from pathlib import PurePosixPath

from .cloud_storage import DirectoryEntry, ObjectInfo

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class FileUtils:
    """Utility class for content type and directory entry helpers."""

    # Compound extensions that PurePosixPath.suffix would split
    COMPOUND_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz")

    def __init__(self):
        """Initialize file utilities."""
        mimetypes.init()
        self._add_custom_mime_types()

    def _add_custom_mime_types(self) -> None:
        """Register MIME types commonly served from static websites."""
        custom_types = {
            '.webp': 'image/webp',
            '.woff': 'font/woff',
            '.woff2': 'font/woff2',
            '.glb': 'model/gltf-binary',
            '.gltf': 'model/gltf+json',
            '.wasm': 'application/wasm',
            '.mjs': 'text/javascript',
            '.md': 'text/markdown',
        }

        for extension, mime_type in custom_types.items():
            mimetypes.add_type(mime_type, extension)

    def get_extension(self, name: str) -> str | None:
        """
        Lower-cased extension including the leading dot, or None.

        Args:
            name: File name or path

        Returns:
            Extension such as ``.png`` or ``.tar.gz``
        """
        lowered = name.lower()
        for compound in self.COMPOUND_EXTENSIONS:
            if lowered.endswith(compound):
                return compound
        suffix = PurePosixPath(lowered).suffix
        return suffix or None

    def get_content_type(self, name: str) -> str:
        """Guess the MIME type from a file name."""
        content_type, _ = mimetypes.guess_type(name)
        return content_type or DEFAULT_CONTENT_TYPE

    def file_entry(self, path: str, info: ObjectInfo) -> DirectoryEntry:
        """Directory entry for a stored object at a normalized path."""
        name = path.rsplit("/", 1)[-1]
        content_type = info.content_type
        if not content_type or content_type == DEFAULT_CONTENT_TYPE:
            content_type = self.get_content_type(name)
        return DirectoryEntry(
            name=name,
            path=path,
            is_directory=False,
            size_bytes=info.size,
            created=info.created or info.last_modified,
            modified=info.last_modified,
            content_type=content_type,
            extension=self.get_extension(name),
            entity_tag=info.etag or None,
        )

    @staticmethod
    def directory_entry(path: str, info: ObjectInfo | None = None) -> DirectoryEntry:
        """Synthetic directory entry; ``info`` is the marker object when one exists."""
        return DirectoryEntry(
            name=path.rsplit("/", 1)[-1],
            path=path,
            is_directory=True,
            size_bytes=0,
            created=(info.created or info.last_modified) if info else None,
            modified=info.last_modified if info else None,
        )


# Global file utils instance
file_utils = FileUtils()

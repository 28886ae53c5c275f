"""
Hierarchical path to object key translation.

Object stores only know flat keys. Folder semantics are emulated on top of
key prefixes: a folder exists when at least one key starts with
``folder + "/"``, and an empty folder is represented by a zero-byte marker
object whose key ends with the separator.
"""

from urllib.parse import unquote

from .cloud_storage import InvalidPathError

SEPARATOR = "/"


class PathTranslator:
    """Converts user-facing paths to backend keys and back."""

    def __init__(self, root_prefix: str = ""):
        root = self._split(root_prefix, allow_empty=True)
        self.root_prefix = SEPARATOR.join(root) + SEPARATOR if root else ""

    def normalize(self, path: str, allow_empty: bool = True) -> str:
        """
        Normalize a path to forward-slash form without leading or trailing separators.

        Args:
            path: User-facing path, e.g. ``a\\b//c.png``
            allow_empty: Whether the root (empty path) is acceptable

        Returns:
            Normalized path such as ``a/b/c.png``

        Raises:
            InvalidPathError: On ``..`` segments, control characters or an
                empty path when not allowed
        """
        return SEPARATOR.join(self._split(path, allow_empty))

    def to_key(self, path: str) -> str:
        """Object key for a file path."""
        return self.root_prefix + self.normalize(path, allow_empty=False)

    def folder_key(self, path: str) -> str:
        """Key of the zero-byte marker object for a folder."""
        return self.to_key(path) + SEPARATOR

    def prefix_for(self, path: str) -> str:
        """Key prefix shared by everything inside a folder; the root maps to the root prefix."""
        normalized = self.normalize(path)
        if not normalized:
            return self.root_prefix
        return self.root_prefix + normalized + SEPARATOR

    def from_key(self, key: str) -> str:
        """Inverse of ``to_key``; marker keys map back to their folder path."""
        if self.root_prefix and not key.startswith(self.root_prefix):
            raise InvalidPathError(f"Key {key!r} is outside the storage root", error_code="OUTSIDE_ROOT")
        return key[len(self.root_prefix):].strip(SEPARATOR)

    @staticmethod
    def is_folder_marker(key: str) -> bool:
        return key.endswith(SEPARATOR)

    @staticmethod
    def parent(path: str) -> str:
        """Parent folder of a normalized path; the root's parent is the root."""
        head, _, _ = path.rpartition(SEPARATOR)
        return head

    @staticmethod
    def ancestors(path: str) -> list[str]:
        """All proper ancestor folders of a normalized path, nearest first, excluding the root."""
        parts = path.split(SEPARATOR)[:-1]
        return [SEPARATOR.join(parts[:i]) for i in range(len(parts), 0, -1)]

    @staticmethod
    def _split(path: str, allow_empty: bool) -> list[str]:
        if path is None:
            raise InvalidPathError("Path must not be None", error_code="INVALID_PATH")

        segments = []
        for segment in path.replace("\\", SEPARATOR).split(SEPARATOR):
            if segment in ("", "."):
                continue
            # Keys are stored unencoded; decoding here only catches %2e%2e-style traversal.
            if segment == ".." or unquote(segment) == "..":
                raise InvalidPathError(f"Path {path!r} escapes the storage root", error_code="PATH_TRAVERSAL")
            if any(ord(ch) < 0x20 for ch in segment):
                raise InvalidPathError(f"Path {path!r} contains control characters", error_code="INVALID_PATH")
            segments.append(segment)

        if not segments and not allow_empty:
            raise InvalidPathError("Path must not be empty", error_code="EMPTY_PATH")
        return segments

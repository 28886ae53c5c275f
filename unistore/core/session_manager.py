"""
Upload session registry for chunked uploads.

This module owns the table of in-flight upload sessions keyed by upload id,
with idle-timeout eviction and a periodic background sweep.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

import structlog

from ..storage.cloud_storage import ObjectInfo

logger = structlog.get_logger(__name__)


class UploadState(str, Enum):
    """Lifecycle of a chunked upload."""

    OPEN = "open"
    RECEIVING = "receiving"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


@dataclass
class UploadSession:
    """Buffered chunks for one upload id."""

    upload_id: str
    relative_path: str
    content_type: str
    total_chunks: int
    total_size_bytes: int
    chunks: Dict[int, bytes] = field(default_factory=dict)
    state: UploadState = UploadState.OPEN
    result: Optional[ObjectInfo] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def chunks_received(self) -> set[int]:
        return set(self.chunks)

    @property
    def buffered_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks.values())

    @property
    def is_complete(self) -> bool:
        return len(self.chunks) == self.total_chunks

    def touch(self) -> None:
        self.last_activity = datetime.utcnow()

    def release(self, state: UploadState) -> None:
        """Drop buffered bytes and move to a terminal state."""
        self.chunks.clear()
        self.state = state


class SessionManager:
    """Registry of upload sessions with idle-timeout eviction."""

    def __init__(self, idle_timeout: timedelta = timedelta(minutes=15), sweep_interval: float = 60.0):
        self.sessions: Dict[str, UploadSession] = {}
        # Committed sessions kept for one idle timeout to answer late duplicate chunks.
        self.committed: Dict[str, UploadSession] = {}
        self.session_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self._cleanup_task: Optional[asyncio.Task] = None

    def get_or_create_session(
        self,
        upload_id: str,
        relative_path: str,
        content_type: str,
        total_chunks: int,
        total_size_bytes: int,
    ) -> UploadSession:
        """Return the live session for ``upload_id``, creating it on the first chunk."""
        committed = self.get_committed_session(upload_id)
        if committed is not None:
            return committed

        session = self.get_session(upload_id)
        if session is None:
            session = UploadSession(
                upload_id=upload_id,
                relative_path=relative_path,
                content_type=content_type,
                total_chunks=total_chunks,
                total_size_bytes=total_size_bytes,
            )
            self.sessions[upload_id] = session
            logger.info("Upload session opened", upload_id=upload_id, path=relative_path, total_chunks=total_chunks)
        return session

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        """Get a session if it exists and has not gone idle."""
        session = self.sessions.get(upload_id)
        if session is None:
            return None

        if self._is_expired(session, datetime.utcnow()):
            self.abandon_session(upload_id)
            return None
        return session

    def abandon_session(self, upload_id: str) -> bool:
        """Abandon a session and release its buffered bytes."""
        session = self.sessions.get(upload_id)
        if session is None:
            return False
        if session.state == UploadState.COMMITTING:
            logger.warning("Refusing to abandon session during commit", upload_id=upload_id)
            return False

        del self.sessions[upload_id]
        buffered = session.buffered_bytes
        session.release(UploadState.ABANDONED)
        logger.info("Upload session abandoned", upload_id=upload_id, released_bytes=buffered)
        return True

    def complete_session(self, upload_id: str) -> None:
        """Retire a committed session, keeping its result for late duplicate chunks."""
        session = self.sessions.pop(upload_id, None)
        if session is not None:
            session.touch()
            self.committed[upload_id] = session

    def get_committed_session(self, upload_id: str) -> Optional[UploadSession]:
        """Get the committed session for ``upload_id`` while it is still retained."""
        session = self.committed.get(upload_id)
        if session is None:
            return None
        if self._is_expired(session, datetime.utcnow()):
            del self.committed[upload_id]
            return None
        return session

    def cleanup_expired_sessions(self) -> List[str]:
        """Abandon all sessions that have been idle past the timeout."""
        current_time = datetime.utcnow()
        expired_sessions = [
            upload_id for upload_id, session in self.sessions.items() if self._is_expired(session, current_time)
        ]

        abandoned = [upload_id for upload_id in expired_sessions if self.abandon_session(upload_id)]
        for upload_id in [uid for uid, s in self.committed.items() if self._is_expired(s, current_time)]:
            del self.committed[upload_id]
        if abandoned:
            logger.info(f"Cleaned up {len(abandoned)} expired upload sessions")
        return abandoned

    def get_active_session_count(self) -> int:
        """Get the number of in-flight sessions."""
        return len(self.sessions)

    def start_cleanup(self) -> None:
        """Start the periodic idle-session sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def shutdown(self) -> None:
        """Stop the sweep task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _periodic_cleanup(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                self.cleanup_expired_sessions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in upload session cleanup", error=str(e))

    def _is_expired(self, session: UploadSession, now: datetime) -> bool:
        return session.state != UploadState.COMMITTING and now - session.last_activity > self.session_timeout

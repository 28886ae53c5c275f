"""
Chunked upload reassembly.

Chunks for an upload id may arrive in any order and may be retried. They are
buffered by index and committed as one object through a single driver
``put_object`` call once every index is present, so no partial object is
ever visible under the target path.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, Field, model_validator

from ..storage.cloud_storage import ObjectInfo, StorageDriver, StorageError, ValidationError
from ..storage.path_translator import PathTranslator
from .session_manager import SessionManager, UploadSession, UploadState

logger = structlog.get_logger(__name__)


class UploadChunkDescriptor(BaseModel):
    """Per-chunk metadata sent alongside the chunk bytes."""

    upload_id: str = Field(min_length=1)
    relative_path: str = Field(min_length=1)
    content_type: str = "application/octet-stream"
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    total_file_size_bytes: int = Field(ge=0)

    @model_validator(mode="after")
    def check_index_in_range(self) -> "UploadChunkDescriptor":
        if self.chunk_index >= self.total_chunks:
            raise ValueError(f"chunk_index {self.chunk_index} out of range for {self.total_chunks} chunks")
        return self


class ChunkAssembler:
    """Buffers chunks per upload session and commits each upload exactly once."""

    def __init__(self, registry: SessionManager, driver: StorageDriver, translator: PathTranslator):
        self.registry = registry
        self.driver = driver
        self.translator = translator

    async def add_chunk(self, descriptor: UploadChunkDescriptor, data: bytes) -> tuple[bool, Optional[ObjectInfo]]:
        """
        Buffer one chunk and commit the upload when it completes the set.

        Args:
            descriptor: Chunk metadata
            data: Raw chunk bytes

        Returns:
            ``(done, info)``; ``info`` is the committed object when ``done``

        Raises:
            ValidationError: Descriptor conflicts with the open session or the
                assembled size does not match the declared total
            StorageError: Backend failure during commit; the session stays in
                ``RECEIVING`` so the final write can be retried
        """
        path = self.translator.normalize(descriptor.relative_path, allow_empty=False)
        session = self.registry.get_or_create_session(
            upload_id=descriptor.upload_id,
            relative_path=path,
            content_type=descriptor.content_type,
            total_chunks=descriptor.total_chunks,
            total_size_bytes=descriptor.total_file_size_bytes,
        )

        async with session.lock:
            if session.state == UploadState.COMMITTED:
                # Another delivery completed the set first.
                return True, session.result
            if session.state == UploadState.ABANDONED:
                raise ValidationError(
                    f"Upload {descriptor.upload_id} was abandoned",
                    error_code="UPLOAD_CLOSED",
                )
            self._check_consistent(session, descriptor, path)

            # Index decides placement; a retried index overwrites the earlier copy.
            session.chunks[descriptor.chunk_index] = bytes(data)
            session.state = UploadState.RECEIVING
            session.touch()

            if not session.is_complete:
                logger.debug(
                    "Chunk buffered",
                    upload_id=session.upload_id,
                    chunk_index=descriptor.chunk_index,
                    received=len(session.chunks),
                    total=session.total_chunks,
                )
                return False, None

            return True, await self._commit(session)

    def abandon(self, upload_id: str) -> bool:
        """Cancel an upload and release its buffered bytes."""
        return self.registry.abandon_session(upload_id)

    async def _commit(self, session: UploadSession) -> ObjectInfo:
        session.state = UploadState.COMMITTING
        payload = b"".join(session.chunks[index] for index in range(session.total_chunks))

        if session.total_size_bytes and len(payload) != session.total_size_bytes:
            session.state = UploadState.RECEIVING
            raise ValidationError(
                f"Upload {session.upload_id} assembled {len(payload)} bytes, expected {session.total_size_bytes}",
                error_code="SIZE_MISMATCH",
                details={"received": len(payload), "expected": session.total_size_bytes},
            )

        try:
            info = await self.driver.put_object(
                self.translator.to_key(session.relative_path),
                payload,
                content_type=session.content_type,
            )
        except StorageError as e:
            session.state = UploadState.RECEIVING
            session.touch()
            logger.warning("Chunked upload commit failed", upload_id=session.upload_id, error=str(e))
            raise

        session.result = info
        session.release(UploadState.COMMITTED)
        self.registry.complete_session(session.upload_id)
        logger.info(
            "Chunked upload committed",
            upload_id=session.upload_id,
            path=session.relative_path,
            size=len(payload),
        )
        return info

    @staticmethod
    def _check_consistent(session: UploadSession, descriptor: UploadChunkDescriptor, path: str) -> None:
        if (
            session.relative_path != path
            or session.total_chunks != descriptor.total_chunks
            or session.total_size_bytes != descriptor.total_file_size_bytes
            or session.content_type != descriptor.content_type
        ):
            raise ValidationError(
                f"Chunk for upload {descriptor.upload_id} does not match the open session",
                error_code="SESSION_MISMATCH",
                details={
                    "session_path": session.relative_path,
                    "chunk_path": path,
                    "session_total_chunks": session.total_chunks,
                    "chunk_total_chunks": descriptor.total_chunks,
                    "session_total_size_bytes": session.total_size_bytes,
                    "chunk_total_size_bytes": descriptor.total_file_size_bytes,
                    "session_content_type": session.content_type,
                    "chunk_content_type": descriptor.content_type,
                },
            )

"""
Example application demonstrating the unified storage API.

This example shows how to:
1. Build a storage context from STORAGE_CONNECTION_STRING
2. Write files directly and in chunks
3. Browse the emulated folder hierarchy
4. Copy, move and delete whole folders
"""

import asyncio
import logging
import uuid

from unistore import PartialBulkFailure, StorageContext, StorageError
from unistore.utils.env_config import get_settings
from unistore.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4 * 1024 * 1024


async def upload_in_chunks(storage: StorageContext, path: str, payload: bytes) -> None:
    """Send a payload the way a browser uploader would, one chunk at a time."""
    upload_id = uuid.uuid4().hex
    chunks = [payload[i:i + CHUNK_SIZE] for i in range(0, len(payload), CHUNK_SIZE)] or [b""]

    for index, chunk in enumerate(chunks):
        done, entry = await storage.write_chunk(
            {
                "upload_id": upload_id,
                "relative_path": path,
                "content_type": "application/octet-stream",
                "chunk_index": index,
                "total_chunks": len(chunks),
                "total_file_size_bytes": len(payload),
            },
            chunk,
        )
        if done:
            logger.info(f"Upload committed: {entry.path} ({entry.size_bytes} bytes)")


async def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    if not settings.connection_string:
        logger.error("Set STORAGE_CONNECTION_STRING to run this example")
        return

    async with StorageContext.from_connection_string(settings=settings) as storage:
        logger.info(f"Using {storage.target.kind.value} storage, container {storage.target.container}")

        await storage.create_folder("demo/empty")
        await storage.write("demo/index.html", b"<h1>Hello</h1>")
        await upload_in_chunks(storage, "demo/assets/blob.bin", bytes(10 * 1024 * 1024))

        async for entry in storage.list("demo"):
            kind = "dir " if entry.is_directory else "file"
            logger.info(f"{kind} {entry.path} {entry.size_bytes}")

        await storage.copy("demo", "demo-copy")
        await storage.move("demo-copy/index.html", "demo-copy/home.html")

        cancel = asyncio.Event()
        try:
            for folder in ("demo", "demo-copy"):
                result = await storage.delete_folder(folder, cancel_event=cancel)
                logger.info(f"Deleted {len(result.succeeded)} objects under {folder}")
        except PartialBulkFailure as e:
            logger.warning(f"Cleanup incomplete: {len(e.result.failed)} failed, {len(e.result.pending)} pending")
        except StorageError as e:
            logger.error(f"Cleanup failed: {e}")


if __name__ == "__main__":
    asyncio.run(main())

"""
Flat-blob storage driver backed by Azure Blob Storage.

Blobs live in a single-level namespace per container; hierarchical names are
a naming convention only. This driver is the only one exposing the static
website control-plane toggle, which requires account-key credentials.
"""

import asyncio
import logging

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContentSettings, StaticWebsite

from .cloud_storage import (
    BackendTransientError,
    InsufficientCredentialError,
    NotFoundError,
    ObjectInfo,
    StorageDriver,
    StorageError,
    StorageKind,
    StoragePermissionError,
    StorageTarget,
)


logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
COPY_POLL_INTERVAL = 0.5


class BlobStorage(StorageDriver):
    """Azure Blob Storage driver for one container."""

    kind = StorageKind.FLAT_BLOB

    def __init__(self, target: StorageTarget, timeout: float = 30.0):
        """Initialize blob storage with its resolved target."""
        super().__init__(target, timeout)
        self._service_client = None
        self._container_client = None
        self._credential = None

    @property
    def account_url(self) -> str:
        credentials = self.target.credentials
        if credentials.blob_endpoint:
            return credentials.blob_endpoint.rstrip("/")
        return f"{credentials.endpoint_protocol}://{credentials.account_name}.blob.{credentials.endpoint_suffix}"

    async def connect(self) -> None:
        """Build service and container clients."""
        credentials = self.target.credentials

        if credentials.has_account_key:
            conn_str = (
                f"DefaultEndpointsProtocol={credentials.endpoint_protocol};"
                f"AccountName={credentials.account_name};"
                f"AccountKey={credentials.account_key.get_secret_value()};"
            )
            if credentials.blob_endpoint:
                conn_str += f"BlobEndpoint={credentials.blob_endpoint};"
            else:
                conn_str += f"EndpointSuffix={credentials.endpoint_suffix};"
            self._service_client = BlobServiceClient.from_connection_string(
                conn_str, connection_timeout=self.timeout, read_timeout=self.timeout
            )
        else:
            self._credential = DefaultAzureCredential()
            self._service_client = BlobServiceClient(
                account_url=self.account_url,
                credential=self._credential,
                connection_timeout=self.timeout,
                read_timeout=self.timeout,
            )

        self._container_client = self._service_client.get_container_client(self.container)
        exists = await self._call(f"open container {self.container}", self._container_client.exists)
        if not exists:
            raise StorageError(f"Container '{self.container}' does not exist", error_code="ContainerNotFound")

        logger.info(f"Connected to blob storage: {credentials.account_name or self.account_url}/{self.container}")

    async def disconnect(self) -> None:
        """Close the underlying HTTP pipeline."""
        if self._service_client:
            await self._run_sync(self._service_client.close)
            if self._credential is not None:
                await self._run_sync(self._credential.close)
            self._service_client = None
            self._container_client = None
            self._credential = None
            logger.info("Disconnected from blob storage")

    async def put_object(self, key, data, content_type=None, metadata=None) -> ObjectInfo:
        """Upload bytes as a block blob, overwriting any existing blob."""
        await self._call(
            f"upload object {key}",
            self._container.upload_blob,
            name=key,
            data=data,
            overwrite=True,
            metadata=metadata,
            content_settings=ContentSettings(content_type=content_type or "application/octet-stream"),
        )
        return await self.get_object_info(key)

    async def get_object(self, key: str) -> bytes:
        """Download blob content as bytes."""

        def download() -> bytes:
            return self._container.download_blob(key).readall()

        return await self._call(f"download object {key}", download)

    async def get_object_info(self, key: str) -> ObjectInfo:
        """Get blob properties."""
        props = await self._call(
            f"get info for object {key}", self._container.get_blob_client(key).get_blob_properties
        )
        return self._to_object_info(key, props)

    async def list_objects(self, prefix: str = "", limit: int | None = None) -> list[ObjectInfo]:
        """List blobs whose name starts with ``prefix``, following all pages."""

        def collect() -> list[ObjectInfo]:
            objects = []
            for blob in self._container.list_blobs(name_starts_with=prefix or None):
                objects.append(self._to_object_info(blob.name, blob))
                if limit and len(objects) >= limit:
                    break
            return objects

        return await self._call(f"list objects under {prefix!r}", collect)

    async def delete_object(self, key: str) -> None:
        """Delete a blob."""
        await self._call(f"delete object {key}", self._container.delete_blob, key)

    async def copy_object(self, source_key: str, destination_key: str) -> ObjectInfo:
        """Server-side copy; waits until a pending copy settles."""
        source = self._container.get_blob_client(source_key)
        destination = self._container.get_blob_client(destination_key)
        operation = f"copy object from {source_key} to {destination_key}"

        copy = await self._call(operation, destination.start_copy_from_url, source.url)
        status = copy.get("copy_status")
        waited = 0.0
        while status == "pending":
            if waited >= self.timeout:
                await self._call(f"abort {operation}", destination.abort_copy, copy["copy_id"])
                raise BackendTransientError(f"Timed out waiting to {operation}", error_code="TIMEOUT")
            await asyncio.sleep(COPY_POLL_INTERVAL)
            waited += COPY_POLL_INTERVAL
            props = await self._call(operation, destination.get_blob_properties)
            status = props.copy.status

        if status != "success":
            raise StorageError(f"Failed to {operation}: copy status {status}", error_code="COPY_FAILED")
        return await self.get_object_info(destination_key)

    async def object_exists(self, key: str) -> bool:
        """Check if a blob exists."""
        return await self._call(f"check existence of object {key}", self._container.get_blob_client(key).exists)

    async def toggle_static_website(
        self,
        enabled: bool,
        index_document: str = "index.html",
        error_document: str = "404.html",
    ) -> None:
        """Enable or disable static website hosting on the storage account."""
        if not self.target.credentials.has_account_key:
            raise InsufficientCredentialError(
                "Static website toggle requires account-key credentials; "
                "the connection uses managed identity",
                error_code="INSUFFICIENT_CREDENTIALS",
            )

        static_website = StaticWebsite(
            enabled=enabled,
            index_document=index_document if enabled else None,
            error_document404_path=error_document if enabled else None,
        )
        await self._call(
            "set static website properties",
            self._service.set_service_properties,
            static_website=static_website,
        )
        logger.info(f"Static website {'enabled' if enabled else 'disabled'} for {self.target.credentials.account_name}")

    # Private helper methods

    @property
    def _service(self) -> BlobServiceClient:
        if self._service_client is None:
            raise StorageError("Blob storage is not connected", error_code="NOT_CONNECTED")
        return self._service_client

    @property
    def _container(self):
        if self._container_client is None:
            raise StorageError("Blob storage is not connected", error_code="NOT_CONNECTED")
        return self._container_client

    @staticmethod
    def _to_object_info(key: str, props) -> ObjectInfo:
        content_settings = getattr(props, "content_settings", None)
        return ObjectInfo(
            key=key,
            size=props.size or 0,
            content_type=(content_settings.content_type if content_settings else None) or "application/octet-stream",
            last_modified=props.last_modified,
            created=getattr(props, "creation_time", None),
            etag=(props.etag or "").strip('"'),
            metadata=props.metadata or {},
        )

    async def _call(self, operation: str, func, *args, **kwargs):
        """Run an SDK call and translate azure-core errors."""
        try:
            return await self._run_sync(func, *args, **kwargs)
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"Object not found during {operation}",
                error_code=getattr(e, "error_code", None) or "BlobNotFound",
                status_code=e.status_code,
            )
        except ClientAuthenticationError as e:
            raise StoragePermissionError(
                f"Access denied during {operation}",
                error_code=getattr(e, "error_code", None),
                status_code=e.status_code,
            )
        except (ServiceRequestError, ServiceResponseError) as e:
            raise BackendTransientError(
                f"Network error during {operation}: {e}",
                error_code="NETWORK_ERROR",
            )
        except HttpResponseError as e:
            if e.status_code == 403:
                raise StoragePermissionError(
                    f"Access denied during {operation}",
                    error_code=getattr(e, "error_code", None),
                    status_code=e.status_code,
                )
            if e.status_code in TRANSIENT_STATUS_CODES:
                raise BackendTransientError(
                    f"Transient error during {operation}: {e.message}",
                    error_code=getattr(e, "error_code", None),
                    status_code=e.status_code,
                )
            raise StorageError(
                f"Blob storage error during {operation}: {e.message}",
                error_code=getattr(e, "error_code", None),
                status_code=e.status_code,
            )

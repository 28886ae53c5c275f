"""
S3-compatible storage driver.

Works with any service implementing the S3 API (AWS S3, MinIO, CloudFlare R2,
DigitalOcean Spaces, Wasabi, Backblaze B2 and others) through boto3.
"""

import logging

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from .cloud_storage import (
    BackendTransientError,
    NotFoundError,
    ObjectInfo,
    StorageDriver,
    StorageError,
    StorageKind,
    StoragePermissionError,
    StorageTarget,
)


logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
ACCESS_DENIED_CODES = {"AccessDenied", "Forbidden", "403"}
TRANSIENT_CODES = {
    "RequestTimeout",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalError",
    "503",
    "500",
}


class S3Storage(StorageDriver):
    """
    S3-compatible driver addressed by bucket + key with a key/secret pair.

    Static website hosting is not exposed here; calling it raises
    UnsupportedOperationError from the base class.
    """

    kind = StorageKind.S3_COMPATIBLE

    def __init__(self, target: StorageTarget, timeout: float = 30.0, max_concurrency: int = 10):
        """Initialize S3 storage with its resolved target."""
        super().__init__(target, timeout)
        self.max_concurrency = max_concurrency
        self._s3_client = None
        self._session = None

    async def connect(self) -> None:
        """Initialize connection to S3-compatible storage."""
        credentials = self.target.credentials
        try:
            self._session = boto3.Session(
                aws_access_key_id=credentials.access_key_id,
                aws_secret_access_key=(
                    credentials.secret_access_key.get_secret_value()
                    if credentials.secret_access_key
                    else None
                ),
                region_name=self.target.region,
            )

            boto_config = Config(
                max_pool_connections=self.max_concurrency,
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={
                    'max_attempts': 3,
                    'mode': 'adaptive'
                },
            )

            client_kwargs = {
                'config': boto_config,
                'region_name': self.target.region,
            }
            if credentials.endpoint_url:
                client_kwargs['endpoint_url'] = credentials.endpoint_url

            self._s3_client = self._session.client('s3', **client_kwargs)

            await self._run_sync(self._s3_client.head_bucket, Bucket=self.container)

            logger.info(f"Connected to S3 storage: {self.container}")

        except NoCredentialsError as e:
            raise StoragePermissionError(
                "S3 credentials not found",
                error_code="NO_CREDENTIALS",
                details={"error": str(e)}
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'UNKNOWN')
            status_code = e.response.get('ResponseMetadata', {}).get('HTTPStatusCode')

            if error_code in ('NoSuchBucket', '404'):
                raise StorageError(
                    f"Bucket '{self.container}' does not exist",
                    error_code=error_code,
                    status_code=status_code
                )
            self._handle_client_error(e, f"connect to bucket {self.container}")
        except (BotoConnectionError, ReadTimeoutError) as e:
            raise BackendTransientError(
                f"Failed to connect to S3 storage: {e}",
                error_code="NETWORK_ERROR",
            )

    async def disconnect(self) -> None:
        """Close connection to S3 storage."""
        if self._s3_client:
            await self._run_sync(self._s3_client.close)
            self._s3_client = None
            self._session = None
            logger.info("Disconnected from S3 storage")

    async def put_object(self, key, data, content_type=None, metadata=None) -> ObjectInfo:
        """Upload bytes to S3 storage."""
        upload_args = {
            'Body': data,
            'ContentType': content_type or 'application/octet-stream',
        }
        if metadata:
            upload_args['Metadata'] = metadata

        await self._call(f"upload object {key}", self._client.put_object, Bucket=self.container, Key=key, **upload_args)
        return await self.get_object_info(key)

    async def get_object(self, key: str) -> bytes:
        """Download object content as bytes."""
        response = await self._call(f"download object {key}", self._client.get_object, Bucket=self.container, Key=key)
        body = response['Body']
        try:
            return await self._run_sync(body.read)
        finally:
            body.close()

    async def get_object_info(self, key: str) -> ObjectInfo:
        """Get information about a stored object."""
        response = await self._call(f"get info for object {key}", self._client.head_object, Bucket=self.container, Key=key)
        return ObjectInfo(
            key=key,
            size=response['ContentLength'],
            content_type=response.get('ContentType', 'application/octet-stream'),
            last_modified=response.get('LastModified'),
            created=response.get('LastModified'),
            etag=response.get('ETag', '').strip('"'),
            metadata=response.get('Metadata', {}),
        )

    async def list_objects(self, prefix: str = "", limit: int | None = None) -> list[ObjectInfo]:
        """List objects in S3 storage with optional prefix filter."""

        def collect() -> list[ObjectInfo]:
            paginator = self._client.get_paginator('list_objects_v2')
            page_iterator = paginator.paginate(
                Bucket=self.container,
                Prefix=prefix,
                PaginationConfig={'MaxItems': limit} if limit else {}
            )
            objects = []
            for page in page_iterator:
                for obj in page.get('Contents', []):
                    objects.append(ObjectInfo(
                        key=obj['Key'],
                        size=obj.get('Size', 0),
                        content_type='application/octet-stream',
                        last_modified=obj.get('LastModified'),
                        created=obj.get('LastModified'),
                        etag=obj.get('ETag', '').strip('"'),
                    ))
            return objects

        return await self._call(f"list objects under {prefix!r}", collect)

    async def delete_object(self, key: str) -> None:
        """Delete an object from S3 storage."""
        await self._call(f"delete object {key}", self._client.delete_object, Bucket=self.container, Key=key)

    async def copy_object(self, source_key: str, destination_key: str) -> ObjectInfo:
        """Copy an object within the bucket."""
        copy_source = {
            'Bucket': self.container,
            'Key': source_key
        }
        await self._call(
            f"copy object from {source_key} to {destination_key}",
            self._client.copy_object,
            CopySource=copy_source,
            Bucket=self.container,
            Key=destination_key,
        )
        return await self.get_object_info(destination_key)

    async def object_exists(self, key: str) -> bool:
        """Check if an object exists in S3 storage."""
        try:
            await self._call(f"check existence of object {key}", self._client.head_object, Bucket=self.container, Key=key)
            return True
        except NotFoundError:
            return False

    # Private helper methods

    @property
    def _client(self):
        if self._s3_client is None:
            raise StorageError("S3 storage is not connected", error_code="NOT_CONNECTED")
        return self._s3_client

    async def _call(self, operation: str, func, *args, **kwargs):
        """Run an SDK call and translate botocore errors."""
        try:
            return await self._run_sync(func, *args, **kwargs)
        except ClientError as e:
            self._handle_client_error(e, operation)
        except (BotoConnectionError, ReadTimeoutError) as e:
            raise BackendTransientError(
                f"Network error during {operation}: {e}",
                error_code="NETWORK_ERROR",
            )
        except BotoCoreError as e:
            raise StorageError(f"Failed to {operation}: {e}")

    def _handle_client_error(self, error: ClientError, operation: str) -> None:
        """Convert S3 client errors to storage exceptions."""
        error_code = error.response.get('Error', {}).get('Code', 'UNKNOWN')
        status_code = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        message = error.response.get('Error', {}).get('Message', str(error))

        if error_code in NOT_FOUND_CODES:
            raise NotFoundError(
                f"Object not found during {operation}",
                error_code=error_code,
                status_code=status_code
            )
        elif error_code in ACCESS_DENIED_CODES:
            raise StoragePermissionError(
                f"Access denied during {operation}",
                error_code=error_code,
                status_code=status_code
            )
        elif error_code in TRANSIENT_CODES or (status_code or 0) >= 500:
            raise BackendTransientError(
                f"Transient error during {operation}: {message}",
                error_code=error_code,
                status_code=status_code
            )
        else:
            raise StorageError(
                f"S3 error during {operation}: {message}",
                error_code=error_code,
                status_code=status_code
            )

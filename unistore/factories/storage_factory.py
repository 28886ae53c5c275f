"""
Factory for resolving connection descriptors and creating storage drivers.
"""

from pydantic import SecretStr

from unistore.storage.blob_storage import BlobStorage
from unistore.storage.cloud_storage import (
    ConfigurationError,
    StorageCredentials,
    StorageDriver,
    StorageKind,
    StorageTarget,
)
from unistore.storage.s3_storage import S3Storage
from unistore.utils.env_config import StorageSettings

FLAT_BLOB_MARKERS = ("accountname", "blobendpoint", "defaultendpointsprotocol")
S3_MARKERS = ("bucket",)
MANAGED_IDENTITY_KEY = "AccessToken"
DEFAULT_BLOB_CONTAINER = "$web"


def parse_connection_string(descriptor: str) -> dict[str, str]:
    """Split ``Name=Value;Name=Value`` into a dict with lower-cased names."""
    if not descriptor or not descriptor.strip():
        raise ConfigurationError("Connection descriptor is empty", error_code="EMPTY_DESCRIPTOR")

    fields = {}
    for segment in descriptor.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        name, sep, value = segment.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(
                f"Malformed connection descriptor segment {name.strip()!r}",
                error_code="MALFORMED_DESCRIPTOR",
            )
        fields[name.strip().lower()] = value.strip()
    return fields


def resolve(descriptor: str) -> StorageTarget:
    """
    Classify a connection descriptor and build the storage target.

    An account-endpoint token selects the flat-blob store; a bucket token
    selects the S3-compatible store.

    Raises:
        ConfigurationError: Neither or both families match, or required
            fields are missing
    """
    fields = parse_connection_string(descriptor)
    is_blob = any(marker in fields for marker in FLAT_BLOB_MARKERS)
    is_s3 = any(marker in fields for marker in S3_MARKERS)

    if is_blob and is_s3:
        raise ConfigurationError(
            "Connection descriptor matches both blob and S3 storage",
            error_code="AMBIGUOUS_DESCRIPTOR",
        )
    if is_blob:
        return _resolve_flat_blob(fields)
    if is_s3:
        return _resolve_s3(fields)
    raise ConfigurationError(
        "Connection descriptor has neither an account endpoint nor a bucket",
        error_code="UNRECOGNIZED_DESCRIPTOR",
    )


def _resolve_flat_blob(fields: dict[str, str]) -> StorageTarget:
    account_name = fields.get("accountname") or None
    blob_endpoint = fields.get("blobendpoint") or None
    if not account_name and not blob_endpoint:
        raise ConfigurationError(
            "Blob connection descriptor requires AccountName or BlobEndpoint",
            error_code="MISSING_FIELD",
            details={"missing": ["AccountName"]},
        )

    account_key = fields.get("accountkey") or None
    managed = account_key is None or account_key == MANAGED_IDENTITY_KEY
    if not managed and not account_name:
        raise ConfigurationError(
            "Blob connection descriptor with AccountKey requires AccountName",
            error_code="MISSING_FIELD",
            details={"missing": ["AccountName"]},
        )

    credentials = StorageCredentials(
        account_name=account_name,
        account_key=None if managed else SecretStr(account_key),
        blob_endpoint=blob_endpoint,
        endpoint_suffix=fields.get("endpointsuffix") or "core.windows.net",
        endpoint_protocol=fields.get("defaultendpointsprotocol") or "https",
        use_managed_identity=managed,
    )
    return StorageTarget(
        kind=StorageKind.FLAT_BLOB,
        credentials=credentials,
        container=fields.get("container") or DEFAULT_BLOB_CONTAINER,
    )


def _resolve_s3(fields: dict[str, str]) -> StorageTarget:
    missing = [name for name, key in (("Bucket", "bucket"), ("KeyId", "keyid"), ("Key", "key")) if not fields.get(key)]
    if missing:
        raise ConfigurationError(
            f"S3 connection descriptor is missing {', '.join(missing)}",
            error_code="MISSING_FIELD",
            details={"missing": missing},
        )

    service_url = fields.get("serviceurl") or None
    if service_url and not service_url.startswith(("http://", "https://")):
        raise ConfigurationError("ServiceUrl must start with http:// or https://", error_code="INVALID_FIELD")

    credentials = StorageCredentials(
        access_key_id=fields["keyid"],
        secret_access_key=SecretStr(fields["key"]),
        endpoint_url=service_url,
    )
    return StorageTarget(
        kind=StorageKind.S3_COMPATIBLE,
        credentials=credentials,
        container=fields["bucket"],
        region=fields.get("region") or None,
    )


def create_driver(target: StorageTarget, settings: StorageSettings | None = None) -> StorageDriver:
    """Create the driver for a resolved target."""
    timeout = settings.backend_timeout if settings else 30.0
    if target.kind == StorageKind.FLAT_BLOB:
        return BlobStorage(target, timeout=timeout)
    if target.kind == StorageKind.S3_COMPATIBLE:
        max_concurrency = settings.max_concurrency if settings else 10
        return S3Storage(target, timeout=timeout, max_concurrency=max_concurrency)
    raise ConfigurationError(f"No driver for storage kind {target.kind!r}", error_code="UNKNOWN_KIND")

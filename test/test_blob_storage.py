from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)

from unistore.factories.storage_factory import resolve
from unistore.storage.blob_storage import BlobStorage
from unistore.storage.cloud_storage import (
    BackendTransientError,
    InsufficientCredentialError,
    NotFoundError,
    StorageError,
    StoragePermissionError,
    StorageTarget,
)


def _props(name: str = "a.txt", size: int = 3) -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        size=size,
        content_settings=SimpleNamespace(content_type="text/plain"),
        last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
        creation_time=datetime(2023, 12, 31, tzinfo=timezone.utc),
        etag='"0x8DB"',
        metadata={},
    )


def _http_error(status: int) -> HttpResponseError:
    error = HttpResponseError(message=f"status {status}")
    error.status_code = status
    return error


@pytest.fixture
def service_client(mocker: Any) -> MagicMock:
    service_cls = mocker.patch("unistore.storage.blob_storage.BlobServiceClient")
    service = service_cls.from_connection_string.return_value
    service.get_container_client.return_value.exists.return_value = True
    return service


@pytest.fixture
def container(service_client: MagicMock) -> MagicMock:
    return service_client.get_container_client.return_value


@pytest.fixture
async def storage(blob_target: StorageTarget, service_client: MagicMock) -> BlobStorage:
    driver = BlobStorage(blob_target, timeout=1.0)
    await driver.connect()
    return driver


@pytest.mark.asyncio
async def test_connect_uses_account_key(storage: BlobStorage, service_client: MagicMock) -> None:
    from unistore.storage import blob_storage

    conn_str = blob_storage.BlobServiceClient.from_connection_string.call_args[0][0]
    assert "AccountName=testaccount;" in conn_str
    assert "AccountKey=dGVzdA==;" in conn_str
    service_client.get_container_client.assert_called_once_with("$web")


@pytest.mark.asyncio
async def test_connect_managed_identity(mocker: Any) -> None:
    service_cls = mocker.patch("unistore.storage.blob_storage.BlobServiceClient")
    credential_cls = mocker.patch("unistore.storage.blob_storage.DefaultAzureCredential")
    service_cls.return_value.get_container_client.return_value.exists.return_value = True

    driver = BlobStorage(resolve("AccountName=acct;AccountKey=AccessToken"))
    await driver.connect()

    service_cls.assert_called_once()
    assert service_cls.call_args.kwargs["account_url"] == "https://acct.blob.core.windows.net"
    assert service_cls.call_args.kwargs["credential"] is credential_cls.return_value


@pytest.mark.asyncio
async def test_connect_missing_container(blob_target: StorageTarget, container: MagicMock) -> None:
    container.exists.return_value = False
    with pytest.raises(StorageError, match="does not exist"):
        await BlobStorage(blob_target).connect()


@pytest.mark.asyncio
async def test_put_object(storage: BlobStorage, container: MagicMock) -> None:
    container.get_blob_client.return_value.get_blob_properties.return_value = _props()

    info = await storage.put_object("a.txt", b"abc", content_type="text/plain")

    kwargs = container.upload_blob.call_args.kwargs
    assert kwargs["name"] == "a.txt"
    assert kwargs["overwrite"] is True
    assert kwargs["content_settings"].content_type == "text/plain"
    assert info.size == 3
    assert info.etag == "0x8DB"
    assert info.created == datetime(2023, 12, 31, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_list_objects_respects_limit(storage: BlobStorage, container: MagicMock) -> None:
    container.list_blobs.return_value = iter([_props("x/a"), _props("x/b"), _props("x/c")])

    objects = await storage.list_objects("x/", limit=2)

    assert [obj.key for obj in objects] == ["x/a", "x/b"]
    container.list_blobs.assert_called_once_with(name_starts_with="x/")


@pytest.mark.asyncio
async def test_copy_object_waits_for_pending_copy(storage: BlobStorage, container: MagicMock, mocker: Any) -> None:
    mocker.patch("unistore.storage.blob_storage.COPY_POLL_INTERVAL", 0)
    blob = container.get_blob_client.return_value
    blob.start_copy_from_url.return_value = {"copy_status": "pending", "copy_id": "c1"}
    pending = SimpleNamespace(copy=SimpleNamespace(status="pending"))
    done = SimpleNamespace(copy=SimpleNamespace(status="success"))
    blob.get_blob_properties.side_effect = [pending, done, _props("b.txt")]

    info = await storage.copy_object("a.txt", "b.txt")

    assert info.key == "b.txt"
    blob.abort_copy.assert_not_called()


@pytest.mark.asyncio
async def test_copy_object_failed(storage: BlobStorage, container: MagicMock) -> None:
    container.get_blob_client.return_value.start_copy_from_url.return_value = {"copy_status": "failed"}
    with pytest.raises(StorageError) as exc_info:
        await storage.copy_object("a.txt", "b.txt")
    assert exc_info.value.error_code == "COPY_FAILED"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (ResourceNotFoundError("gone"), NotFoundError),
        (ClientAuthenticationError("bad key"), StoragePermissionError),
        (ServiceRequestError("connection reset"), BackendTransientError),
        (_http_error(403), StoragePermissionError),
        (_http_error(503), BackendTransientError),
        (_http_error(429), BackendTransientError),
        (_http_error(400), StorageError),
    ],
)
async def test_error_mapping(storage: BlobStorage, container: MagicMock, error: Exception, expected: type) -> None:
    container.delete_blob.side_effect = error
    with pytest.raises(expected):
        await storage.delete_object("a.txt")


@pytest.mark.asyncio
async def test_toggle_static_website(storage: BlobStorage, service_client: MagicMock) -> None:
    await storage.toggle_static_website(True, index_document="home.html", error_document="missing.html")

    static_website = service_client.set_service_properties.call_args.kwargs["static_website"]
    assert static_website.enabled is True
    assert static_website.index_document == "home.html"
    assert static_website.error_document404_path == "missing.html"


@pytest.mark.asyncio
async def test_toggle_static_website_requires_account_key(mocker: Any) -> None:
    service_cls = mocker.patch("unistore.storage.blob_storage.BlobServiceClient")
    mocker.patch("unistore.storage.blob_storage.DefaultAzureCredential")

    driver = BlobStorage(resolve("AccountName=acct"))
    await driver.connect()

    with pytest.raises(InsufficientCredentialError):
        await driver.toggle_static_website(True)
    service_cls.return_value.set_service_properties.assert_not_called()


@pytest.mark.asyncio
async def test_disconnect_closes_clients(storage: BlobStorage, service_client: MagicMock) -> None:
    await storage.disconnect()
    service_client.close.assert_called_once()
    with pytest.raises(StorageError):
        await storage.get_object("a.txt")

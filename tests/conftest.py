import base64

import pytest

from blobsink.settings import Settings
from blobsink.storage_client import BlobStorageClient, build_http_client
from fake_blob_service import FakeBlobService

ACCOUNT = "devaccount"
CONTAINER = "ingest"
KEY = base64.b64encode(b"not-a-real-account-key").decode("ascii")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        account=ACCOUNT,
        container=CONTAINER,
        key=KEY,
        endpoint="https://blob.test",
        schemas=str(tmp_path),
    )


@pytest.fixture
def fake_service() -> FakeBlobService:
    return FakeBlobService(ACCOUNT, CONTAINER, key=KEY)


@pytest.fixture
async def storage(settings, fake_service):
    client = BlobStorageClient(settings, http=build_http_client(settings, transport=fake_service.transport()))
    yield client
    await client.aclose()

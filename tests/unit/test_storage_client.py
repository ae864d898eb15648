"""
Tests for the boto3-backed object store.

The boto3 client is stubbed with botocore's Stubber, so these check the
requests we send and how backend responses are classified without
talking to MinIO.
"""

from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from storage_worker.core.sessions.store import BackendError, ObjectNotFoundError
from storage_worker.infrastructure.storage.client import (
    MAX_DELETE_BATCH,
    MemoryObjectStore,
    ObjectStoreConfig,
    S3ObjectStore,
    create_object_store,
    translate_error,
)

KEY = "abc/session.tar.gz"


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def config() -> ObjectStoreConfig:
    return ObjectStoreConfig(
        endpoint="minio",
        access_key="minioadmin",
        secret_key="minioadmin",
        bucket_name="sessions",
    )


@pytest.fixture
def s3_store(config):
    store = S3ObjectStore(config)
    with Stubber(store._s3_client) as stubber:
        store.stubber = stubber
        yield store
        stubber.assert_no_pending_responses()


# ---------------------------------------------------------------------------
# Configuration and error classification
# ---------------------------------------------------------------------------

class TestConfig:

    def test_endpoint_url_uses_port_and_scheme(self, config):
        assert config.endpoint_url == "http://minio:9000"

        config.use_ssl = True
        config.port = 443
        assert config.endpoint_url == "https://minio:443"

    def test_factory_mock_mode(self, config):
        store = create_object_store(config=config, mock_mode=True)

        assert isinstance(store, MemoryObjectStore)
        assert store.bucket_name == "sessions"

    def test_factory_requires_config(self):
        with pytest.raises(ValueError):
            create_object_store(config=None, mock_mode=False)


class TestTranslateError:

    @pytest.mark.parametrize("code", ["NoSuchKey", "NotFound", "404", "NoSuchBucket"])
    def test_not_found_codes(self, code):
        error = translate_error(client_error(code), KEY)

        assert isinstance(error, ObjectNotFoundError)
        assert error.key == KEY

    def test_other_codes_are_backend_errors(self):
        error = translate_error(client_error("AccessDenied"), KEY)

        assert isinstance(error, BackendError)
        assert "AccessDenied" in str(error)

    def test_non_client_errors_are_backend_errors(self):
        assert isinstance(translate_error(ConnectionError("refused"), KEY), BackendError)


# ---------------------------------------------------------------------------
# Stubbed S3 calls
# ---------------------------------------------------------------------------

class TestS3ObjectStore:

    @pytest.mark.asyncio
    async def test_missing_bucket(self, s3_store):
        s3_store.stubber.add_client_error(
            "head_bucket",
            service_error_code="404",
            http_status_code=404,
            expected_params={"Bucket": "sessions"},
        )

        assert await s3_store.bucket_exists() is False

    @pytest.mark.asyncio
    async def test_make_bucket_tolerates_existing(self, s3_store):
        s3_store.stubber.add_client_error(
            "create_bucket",
            service_error_code="BucketAlreadyOwnedByYou",
            http_status_code=409,
            expected_params={"Bucket": "sessions"},
        )

        await s3_store.make_bucket()

    @pytest.mark.asyncio
    async def test_stat_object(self, s3_store):
        modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
        s3_store.stubber.add_response(
            "head_object",
            {"ContentLength": 42, "LastModified": modified},
            expected_params={"Bucket": "sessions", "Key": KEY},
        )

        info = await s3_store.stat_object(KEY)

        assert info.name == KEY
        assert info.size == 42
        assert info.last_modified == modified

    @pytest.mark.asyncio
    async def test_stat_missing_object(self, s3_store):
        s3_store.stubber.add_client_error(
            "head_object",
            service_error_code="404",
            http_status_code=404,
            expected_params={"Bucket": "sessions", "Key": KEY},
        )

        with pytest.raises(ObjectNotFoundError):
            await s3_store.stat_object(KEY)

    @pytest.mark.asyncio
    async def test_stat_backend_failure(self, s3_store):
        s3_store.stubber.add_client_error(
            "head_object",
            service_error_code="InternalError",
            http_status_code=500,
        )

        with pytest.raises(BackendError):
            await s3_store.stat_object(KEY)

    @pytest.mark.asyncio
    async def test_list_objects_follows_pages(self, s3_store):
        modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
        s3_store.stubber.add_response(
            "list_objects_v2",
            {
                "Contents": [{"Key": "a/session.tar.gz", "Size": 1, "LastModified": modified}],
                "IsTruncated": True,
                "NextContinuationToken": "page-2",
            },
            expected_params={"Bucket": "sessions", "Prefix": ""},
        )
        s3_store.stubber.add_response(
            "list_objects_v2",
            {
                "Contents": [{"Key": "b/session.tar.gz", "Size": 2, "LastModified": modified}],
                "IsTruncated": False,
            },
            expected_params={"Bucket": "sessions", "Prefix": "", "ContinuationToken": "page-2"},
        )

        names = [info.name async for info in s3_store.list_objects()]

        assert names == ["a/session.tar.gz", "b/session.tar.gz"]

    @pytest.mark.asyncio
    async def test_remove_objects_reports_per_key_errors(self, s3_store):
        s3_store.stubber.add_response(
            "delete_objects",
            {
                "Errors": [
                    {"Key": "b/session.tar.gz", "Code": "AccessDenied", "Message": "denied"},
                ],
            },
            expected_params={
                "Bucket": "sessions",
                "Delete": {
                    "Objects": [{"Key": "a/session.tar.gz"}, {"Key": "b/session.tar.gz"}],
                    "Quiet": True,
                },
            },
        )

        errors = await s3_store.remove_objects(["a/session.tar.gz", "b/session.tar.gz"])

        assert len(errors) == 1
        assert errors[0].key == "b/session.tar.gz"
        assert errors[0].code == "AccessDenied"
        assert not errors[0].is_not_found

    @pytest.mark.asyncio
    async def test_remove_objects_batches_large_requests(self, s3_store):
        keys = [f"s{i}/session.tar.gz" for i in range(MAX_DELETE_BATCH + 5)]
        s3_store.stubber.add_response("delete_objects", {})
        s3_store.stubber.add_response("delete_objects", {})

        assert await s3_store.remove_objects(keys) == []

"""
Unit tests for S3CloudStore.
"""
import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from fotorelay.core.cloud_store import S3CloudStore, S3Config
from fotorelay.exceptions import RemoteRequestError, TransientNetworkError, UploadRejected


def _client_error(status, code="Error", message="failed"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status}
        },
        "PutObject"
    )


@pytest.mark.unit
class TestS3CloudStore:
    """Test cases for S3CloudStore."""

    def setup_method(self):
        self.client = MagicMock()
        self.client.put_object.return_value = {"ETag": '"abc123"'}
        self.store = S3CloudStore(S3Config(bucket="photos", region="eu-west-1"), client=self.client)

    def test_upload_returns_url_and_key(self):
        result = self.store.upload(b"data", "image-abc", "image/jpeg", folder="albums", extension=".jpg")

        assert result == {
            "url": "https://photos.s3.eu-west-1.amazonaws.com/albums/image-abc.jpg",
            "key": "albums/image-abc.jpg",
            "size": 4,
            "etag": "abc123"
        }
        self.client.put_object.assert_called_once_with(
            Bucket="photos", Key="albums/image-abc.jpg", Body=b"data", ContentType="image/jpeg"
        )

    def test_object_key_without_folder(self):
        assert self.store.object_key("", "image-abc", ".png") == "image-abc.png"
        assert self.store.object_key("/albums/", "image-abc") == "albums/image-abc"

    def test_url_with_public_base(self):
        store = S3CloudStore(
            S3Config(bucket="photos", public_base_url="https://cdn.example.com/"), client=self.client
        )
        assert store.object_url("albums/a.jpg") == "https://cdn.example.com/albums/a.jpg"

    def test_url_with_custom_endpoint(self):
        store = S3CloudStore(
            S3Config(bucket="photos", endpoint_url="http://minio:9000"), client=self.client
        )
        assert store.object_url("albums/a.jpg") == "http://minio:9000/photos/albums/a.jpg"

    @pytest.mark.parametrize("status,code,expected", [
        (503, "ServiceUnavailable", TransientNetworkError),
        (500, "InternalError", TransientNetworkError),
        (429, "TooManyRequests", TransientNetworkError),
        (503, "SlowDown", TransientNetworkError),
        (400, "RequestTimeout", TransientNetworkError),
        (400, "InvalidArgument", UploadRejected),
        (413, "EntityTooLarge", UploadRejected),
        (415, "UnsupportedMediaType", UploadRejected),
        (403, "AccessDenied", RemoteRequestError),
        (404, "NoSuchBucket", RemoteRequestError),
    ])
    def test_client_error_mapping(self, status, code, expected):
        self.client.put_object.side_effect = _client_error(status, code)

        with pytest.raises(expected) as exc_info:
            self.store.upload(b"data", "image-abc", "image/jpeg")

        assert type(exc_info.value) is expected
        assert exc_info.value.status_code == status

    def test_connection_error_is_transient(self):
        self.client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")

        with pytest.raises(TransientNetworkError):
            self.store.upload(b"data", "image-abc", "image/jpeg")

    def test_other_botocore_error_is_permanent(self):
        self.client.put_object.side_effect = NoCredentialsError()

        with pytest.raises(RemoteRequestError):
            self.store.upload(b"data", "image-abc", "image/jpeg")

    @pytest.mark.asyncio
    async def test_upload_async(self):
        result = await self.store.upload_async(b"data", "image-abc", "image/png", extension=".png")

        assert result["key"] == "albums/image-abc.png"

    def test_close(self):
        self.store.close()
        self.client.close.assert_called_once()

"""
S3CloudStore - boto3-based object store for relayed images.
Works with Amazon S3 and S3-compatible services (MinIO, R2, ...).
"""
from typing import Dict, Optional, Any
from dataclasses import dataclass
import asyncio
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from fotorelay.exceptions import RemoteRequestError, TransientNetworkError, UploadRejected

logger = logging.getLogger(__name__)

# Status codes meaning "this payload, as encoded, will never be accepted"
REJECTION_STATUS_CODES = {400, 413, 415}

_TRANSIENT_BOTO_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


@dataclass
class S3Config:
    """S3 configuration dataclass."""
    bucket: str
    region: str = "us-east-1"
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint_url: Optional[str] = None  # For S3-compatible services (MinIO, etc.)
    public_base_url: Optional[str] = None  # CDN or custom domain in front of the bucket
    timeout: int = 60
    signature_version: str = "s3v4"


class S3CloudStore:
    """
    Uploads image payloads and returns their durable HTTPS URL.

    boto3's own retries are disabled; callers wrap uploads in the shared
    ``RetryPolicy`` and rely on the error mapping below:

    - 400/413/415 -> ``UploadRejected`` (try a different encoding)
    - other 4xx -> ``RemoteRequestError``
    - 5xx, throttling and connection failures -> ``TransientNetworkError``
    """

    def __init__(self, config: S3Config, client=None):
        """
        Initialize the store.

        Args:
            config: S3Config instance with connection details
            client: Optional pre-built boto3 S3 client
        """
        self.config = config
        self.bucket = config.bucket

        if client is None:
            boto_config = Config(
                signature_version=config.signature_version,
                connect_timeout=config.timeout,
                read_timeout=config.timeout,
                retries={
                    'total_max_attempts': 1,
                    'mode': 'standard'
                }
            )
            client = boto3.client(
                's3',
                region_name=config.region,
                aws_access_key_id=config.access_key,
                aws_secret_access_key=config.secret_key,
                endpoint_url=config.endpoint_url,
                config=boto_config
            )
        self.client = client

        logger.info(f"S3CloudStore initialized for bucket: {self.bucket}")

    def object_key(self, folder: str, public_id: str, extension: str = "") -> str:
        folder = folder.strip("/")
        return f"{folder}/{public_id}{extension}" if folder else f"{public_id}{extension}"

    def object_url(self, key: str) -> str:
        """Public URL of an object key."""
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def upload(
        self,
        data: bytes,
        public_id: str,
        content_type: str,
        folder: str = "albums",
        extension: str = ""
    ) -> Dict[str, Any]:
        """
        Store ``data`` under ``<folder>/<public_id><extension>``.

        The key is derived only from the arguments, so repeating an upload
        overwrites the same object.

        Returns:
            Dict with url, key, size and etag

        Raises:
            UploadRejected, RemoteRequestError, TransientNetworkError
        """
        key = self.object_key(folder, public_id, extension)
        try:
            response = self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type
            )
        except ClientError as e:
            raise self._map_client_error(e, key)
        except _TRANSIENT_BOTO_ERRORS as e:
            logger.warning(f"Connection error uploading {key}: {e}")
            raise TransientNetworkError(f"Cloud upload failed: {e}", operation="cloud_upload")
        except BotoCoreError as e:
            logger.error(f"Error uploading {key}: {e}")
            raise RemoteRequestError(f"Cloud upload failed: {e}", operation="cloud_upload")

        url = self.object_url(key)
        logger.info(f"Uploaded {key} ({len(data)} bytes)", extra={'key': key, 'size': len(data)})

        return {
            "url": url,
            "key": key,
            "size": len(data),
            "etag": response.get('ETag', '').strip('"')
        }

    async def upload_async(self, *args, **kwargs) -> Dict[str, Any]:
        """Run :meth:`upload` on the loop's executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.upload(*args, **kwargs))

    def _map_client_error(self, error: ClientError, key: str) -> Exception:
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        code = error.response.get('Error', {}).get('Code', 'Unknown')
        message = error.response.get('Error', {}).get('Message', str(error))
        text = f"Cloud upload of {key} failed ({code}): {message}"

        # RequestTimeout arrives as a 400
        if code in ('SlowDown', 'RequestTimeout') or (status is not None and (status >= 500 or status == 429)):
            logger.warning(text)
            return TransientNetworkError(text, status_code=status, operation="cloud_upload")
        if status in REJECTION_STATUS_CODES:
            logger.warning(text)
            return UploadRejected(text, status_code=status, operation="cloud_upload")

        logger.error(text)
        return RemoteRequestError(text, status_code=status, operation="cloud_upload")

    def close(self):
        """Close the underlying HTTP connection pool."""
        close = getattr(self.client, 'close', None)
        if callable(close):
            close()
        logger.info("S3CloudStore closed")

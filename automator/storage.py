"""
Storage Client

Saves processed images either to a local directory or to S3-compatible
storage (MinIO).
"""

import io
import logging
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .config import get_settings

logger = logging.getLogger(__name__)


class LocalStorageClient:
    """Writes objects under a local directory, keyed like S3 objects."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def upload_bytes(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Saved {len(data)} bytes to {path}")
        return key


class StorageClient:
    """S3-compatible storage client."""

    def __init__(self):
        """Initialize S3 client."""
        settings = get_settings()
        endpoint_url = f"{'https' if settings.minio_secure else 'http'}://{settings.minio_endpoint}"

        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=settings.minio_access_key,
            aws_secret_access_key=settings.minio_secret_key,
            config=Config(signature_version="s3v4"),
            region_name="us-east-1",
        )
        self.bucket = settings.minio_bucket

    def upload_bytes(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        """
        Upload bytes to S3.

        Args:
            data: Bytes to upload
            key: S3 object key
            content_type: MIME type

        Returns:
            S3 key
        """
        try:
            self.client.upload_fileobj(
                io.BytesIO(data),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
            logger.info(f"Uploaded bytes to s3://{self.bucket}/{key}")
            return key
        except ClientError as e:
            logger.error(f"Failed to upload bytes: {e}")
            raise


# Singleton
_storage_client: StorageClient | LocalStorageClient | None = None


def get_storage_client() -> StorageClient | LocalStorageClient:
    """Get or create the storage client selected by settings."""
    global _storage_client
    if _storage_client is None:
        settings = get_settings()
        if settings.minio_endpoint:
            _storage_client = StorageClient()
        else:
            _storage_client = LocalStorageClient(Path(settings.output_dir))
    return _storage_client

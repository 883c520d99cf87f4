"""Pre-signed upload URLs for the object store.

Clients upload training photos / archives straight to S3 (or an S3-compatible
store such as R2) and then pass the resulting object URL to the training
endpoint. The backend never handles the binary data.
"""

import uuid
from dataclasses import dataclass

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from photoai.core.config import Settings
from photoai.services.exceptions import StorageError, ValidationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class PresignedUpload:
    upload_url: str
    object_url: str
    key: str
    expires_in: int


def make_object_key(owner_id: str, filename: str) -> str:
    """Build a collision-free object key under the owner's prefix."""
    safe = filename.strip().replace(" ", "_").replace("/", "_")
    if not safe:
        raise ValidationError("Filename is required")
    return f"uploads/{owner_id}/{uuid.uuid4().hex}_{safe}"


class ObjectStorage:
    """Thin wrapper around a boto3 S3 client."""

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
        expires_in: int = 3600,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.expires_in = expires_in
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            config=Config(signature_version="s3v4"),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(
            bucket=settings.s3_bucket_name,
            region=settings.s3_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
            expires_in=settings.presign_expiry_seconds,
        )

    def object_url(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def presign_upload(
        self, owner_id: str, filename: str, content_type: str | None = None
    ) -> PresignedUpload:
        """Create a pre-signed PUT URL for one object.

        Raises:
            ValidationError: Empty filename
            StorageError: The store could not sign the request
        """
        key = make_object_key(owner_id, filename)
        params = {"Bucket": self.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type

        try:
            url = self.client.generate_presigned_url(
                ClientMethod="put_object", Params=params, ExpiresIn=self.expires_in
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("storage.presign_failed", key=key, error=str(e))
            raise StorageError(f"Failed to generate presigned URL: {e}") from e

        logger.info("storage.presigned", owner_id=owner_id, key=key)
        return PresignedUpload(
            upload_url=url,
            object_url=self.object_url(key),
            key=key,
            expires_in=self.expires_in,
        )

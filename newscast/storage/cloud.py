import logging
import mimetypes
import os
from typing import Optional, Union

import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv

from .base import BlobStore, to_bytes


logger = logging.getLogger("storage")

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class S3BlobStore(BlobStore):
    """A blob store backed by an S3-compatible bucket (AWS, R2, Spaces)."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        key_id: Optional[str] = None,
        access_key: Optional[str] = None,
        region_name: Optional[str] = None,
        client=None,
    ):
        if not bucket_name:
            raise RuntimeError("S3 blob store requires a bucket name")
        self.bucket_name = bucket_name
        self.endpoint = endpoint_url
        if client is not None:
            self.client = client
            return

        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            region_name=region_name or "auto",
            endpoint_url=endpoint_url,
            aws_access_key_id=key_id,
            aws_secret_access_key=access_key,
        )

    @classmethod
    def from_env(cls) -> "S3BlobStore":
        """Build the store from BUCKET_* environment variables.

        Raises:
            RuntimeError: If required variables are missing.
        """
        load_dotenv()
        endpoint = os.getenv("BUCKET_ENDPOINT")
        key_id = os.getenv("BUCKET_KEY_ID")
        access_key = os.getenv("BUCKET_ACCESS_KEY")
        bucket_name = os.getenv("BUCKET_NAME")

        if not key_id or not access_key or not bucket_name:
            raise RuntimeError(
                "Missing required environment variables for cloud storage."
                " Please ensure BUCKET_KEY_ID, BUCKET_ACCESS_KEY and BUCKET_NAME are set."
            )
        return cls(
            bucket_name=bucket_name,
            endpoint_url=endpoint,
            key_id=key_id,
            access_key=access_key,
            region_name=os.getenv("BUCKET_REGION"),
        )

    def get(self, key: str) -> Optional[bytes]:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if str(e.response["Error"]["Code"]) in _MISSING_CODES:
                return None
            raise RuntimeError(f"Error reading blob {key} from cloud storage: {e}") from e
        return response["Body"].read()

    def put(self, key: str, data: Union[bytes, str], content_type: Optional[str] = None) -> str:
        content_type = content_type or mimetypes.guess_type(key)[0] or "application/octet-stream"
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=to_bytes(data),
                ContentType=content_type,
            )
        except ClientError as e:
            raise RuntimeError(f"Error saving blob {key} to cloud storage: {e}") from e
        logger.debug(f"Uploaded blob {key} to bucket {self.bucket_name}")
        return key

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if str(e.response["Error"]["Code"]) in _MISSING_CODES:
                return
            raise RuntimeError(f"Error deleting blob {key} from cloud storage: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if str(e.response["Error"]["Code"]) in _MISSING_CODES:
                return False
            raise RuntimeError(f"Error checking blob {key}: {e}") from e
        return True

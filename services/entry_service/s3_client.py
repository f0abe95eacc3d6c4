"""AWS S3 client for attachment storage."""

import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

ATTACHMENT_PREFIX = "attachments"


class S3Client:
    """Handles S3 operations for attachment payloads."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None
    ):
        """
        Initialize S3 client.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            access_key_id: AWS access key ID (optional, uses default credentials if not provided)
            secret_access_key: AWS secret access key (optional)
        """
        self.bucket_name = bucket_name
        self.region = region

        if access_key_id and secret_access_key:
            self.s3_client = boto3.client(
                's3',
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key
            )
        else:
            # Use default credentials (from environment or IAM role)
            self.s3_client = boto3.client('s3', region_name=region)

    @staticmethod
    def object_key(attachment_key: str) -> str:
        return f"{ATTACHMENT_PREFIX}/{attachment_key}"

    def put_attachment(
        self,
        attachment_key: str,
        data: bytes,
        content_type: str = "application/octet-stream"
    ) -> str:
        """
        Store an attachment payload under its client-chosen key.

        Writing the same key twice overwrites the object, so retried uploads
        are harmless.

        Returns:
            The attachment key
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self.object_key(attachment_key),
                Body=data,
                ContentType=content_type
            )
            logger.info(f"Stored attachment {attachment_key} ({len(data)} bytes) in S3")
            return attachment_key

        except ClientError as e:
            logger.error(f"Failed to store attachment {attachment_key} in S3: {e}", exc_info=True)
            raise

    def generate_presigned_url(self, attachment_key: str, expiration: int = 3600) -> str:
        """
        Generate a presigned URL for temporary access to an attachment.

        Args:
            attachment_key: Attachment key
            expiration: URL expiration time in seconds (default: 1 hour)

        Returns:
            Presigned URL
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': self.object_key(attachment_key)},
                ExpiresIn=expiration
            )

        except ClientError as e:
            logger.error(f"Failed to generate presigned URL: {e}", exc_info=True)
            raise

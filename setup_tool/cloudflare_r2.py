"""
Cloudflare R2 storage provider implementation.

Cloudflare R2 is S3-compatible and offers zero egress fees, which suits
serving audio sets and cover images straight to listeners.
"""

import logging
import boto3
from botocore.exceptions import ClientError, NoCredentialsError
from typing import Optional, Dict, Any, List
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)


class CloudflareR2Provider(S3StorageProvider):
    """
    Cloudflare R2 storage implementation using boto3 S3 client.
    """

    def __init__(self):
        self.s3_client = None
        self.bucket_name = None
        self.endpoint_url = None
        self.account_id = None

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Authenticate with Cloudflare R2.

        Args:
            credentials: Must contain:
                - access_key_id: R2 access key ID
                - secret_access_key: R2 secret access key
                - account_id: Cloudflare account ID
                - bucket: Bucket name (optional, can be set later)
        """
        try:
            self.account_id = credentials['account_id']
            self.endpoint_url = f"https://{self.account_id}.r2.cloudflarestorage.com"
            self.bucket_name = credentials.get('bucket')

            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=credentials['access_key_id'],
                aws_secret_access_key=credentials['secret_access_key'],
                region_name='auto'  # R2 uses 'auto' region
            )

            try:
                self.s3_client.list_buckets()
            except ClientError:
                # Token may be scoped to a single bucket
                if self.bucket_name:
                    logger.warning("Could not list buckets. Verifying specific bucket access...")
                    self.s3_client.head_bucket(Bucket=self.bucket_name)
                else:
                    raise
            return True

        except (ClientError, NoCredentialsError, KeyError, TypeError) as e:
            logger.error(f"R2 authentication failed: {e}")
            return False

    def create_bucket(self, bucket_name: str, public: bool = False) -> Dict[str, Any]:
        """Create R2 bucket unless it already exists."""
        if not self.bucket_exists(bucket_name):
            self.s3_client.create_bucket(Bucket=bucket_name)
            if public:
                # PutBucketPolicy is not supported by R2
                logger.warning(
                    f"R2 bucket '{bucket_name}' must be made public via the Cloudflare dashboard"
                )
        self.bucket_name = bucket_name

        return {
            "bucket_name": bucket_name,
            "endpoint": self.endpoint_url,
            "url": f"{self.endpoint_url}/{bucket_name}",
            "public": public
        }

    def bucket_exists(self, bucket_name: str) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=bucket_name)
            return True
        except ClientError:
            return False

    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     cache_control: Optional[str] = None,
                     upsert: bool = False) -> bool:
        try:
            if not upsert and self.file_exists(remote_key):
                logger.warning(f"Object already exists: {remote_key}")
                return False

            kwargs = {'Bucket': self.bucket_name, 'Key': remote_key, 'Body': data}
            if content_type:
                kwargs['ContentType'] = content_type
            if cache_control:
                kwargs['CacheControl'] = f"max-age={cache_control}"
            self.s3_client.put_object(**kwargs)
            return True
        except ClientError as e:
            logger.error(f"Upload failed: {e}")
            return False

    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=remote_key)
            return response['Body'].read()
        except ClientError as e:
            logger.warning(f"Download failed: {e}")
            return None

    def delete_file(self, remote_key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=remote_key)
            return True
        except ClientError as e:
            logger.error(f"Delete failed: {e}")
            return False

    def delete_files(self, remote_keys) -> bool:
        keys = list(remote_keys)
        if not keys:
            return True
        try:
            response = self.s3_client.delete_objects(
                Bucket=self.bucket_name,
                Delete={'Objects': [{'Key': key} for key in keys], 'Quiet': True}
            )
            errors = response.get('Errors', [])
            for err in errors:
                logger.error(f"Delete failed for {err.get('Key')}: {err.get('Message')}")
            return not errors
        except ClientError as e:
            logger.error(f"Batch delete failed: {e}")
            return False

    def file_exists(self, remote_key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=remote_key)
            return True
        except ClientError:
            return False

    def list_files(self, prefix: Optional[str] = None,
                   limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        folder = self._folder_prefix(prefix)
        try:
            kwargs = {'Bucket': self.bucket_name}
            if folder:
                kwargs['Prefix'] = folder

            files = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(**kwargs):
                for obj in page.get('Contents', []):
                    files.append({
                        'name': obj['Key'][len(folder):],
                        'Key': obj['Key'],
                        'Size': obj['Size'],
                        'LastModified': obj['LastModified'].timestamp(),
                    })

            return self._paginate(files, limit, offset)

        except ClientError as e:
            logger.error(f"List files failed: {e}")
            return []

    def get_bucket_size(self) -> int:
        """Calculate total bucket size."""
        return sum(f['Size'] for f in self.list_files())

"""
Abstract base class for bucket storage providers.

This module defines the interface that all storage providers must implement,
allowing the hub to keep its audio, covers and avatars buckets on the local
filesystem or on Cloudflare R2 (or any other S3-compatible service).
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Iterable


class S3StorageProvider(ABC):
    """
    Abstract base class for S3-compatible storage providers.

    A provider instance is bound to one bucket (set by create_bucket) and
    every key argument is relative to that bucket.
    """

    bucket_name: Optional[str] = None

    @abstractmethod
    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Authenticate with the storage provider.

        Args:
            credentials: Dictionary containing authentication credentials
                        (base_path for local, account_id/access keys for R2)

        Returns:
            True if authentication successful, False otherwise
        """
        pass

    @abstractmethod
    def create_bucket(self, bucket_name: str, public: bool = False) -> Dict[str, Any]:
        """
        Create a bucket (if needed) and bind this provider to it.

        Returns:
            Dictionary with bucket information (endpoint, url, etc.)
        """
        pass

    @abstractmethod
    def bucket_exists(self, bucket_name: str) -> bool:
        pass

    @abstractmethod
    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     cache_control: Optional[str] = None,
                     upsert: bool = False) -> bool:
        """
        Store an object.

        Args:
            data: Object content
            remote_key: Key (path) for the object in the bucket
            content_type: MIME type recorded with the object
            cache_control: Cache-Control value recorded with the object
            upsert: Overwrite an existing object; when False an existing key fails

        Returns:
            True if upload successful, False otherwise
        """
        pass

    @abstractmethod
    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        """Return the object content, or None when the key does not exist."""
        pass

    @abstractmethod
    def delete_file(self, remote_key: str) -> bool:
        """
        Delete an object. Deleting a missing key is not an error.

        Returns:
            True if deletion successful, False otherwise
        """
        pass

    def delete_files(self, remote_keys: Iterable[str]) -> bool:
        """Delete several objects; True only if every deletion succeeded."""
        results = [self.delete_file(key) for key in remote_keys]
        return all(results)

    @abstractmethod
    def file_exists(self, remote_key: str) -> bool:
        pass

    @abstractmethod
    def list_files(self, prefix: Optional[str] = None,
                   limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        """
        List objects under a folder prefix.

        Returns:
            Entries sorted by name, each with 'name' (path below the prefix),
            'Key', 'Size' and 'LastModified'
        """
        pass

    @abstractmethod
    def get_bucket_size(self) -> int:
        """Total size of all objects in the bucket, in bytes."""
        pass

    @staticmethod
    def _folder_prefix(prefix: Optional[str]) -> str:
        if not prefix:
            return ""
        return prefix.strip("/") + "/"

    @staticmethod
    def _paginate(entries: List[Dict[str, Any]], limit: Optional[int], offset: int) -> List[Dict[str, Any]]:
        entries.sort(key=lambda e: e['name'])
        end = None if limit is None else offset + limit
        return entries[offset:end]

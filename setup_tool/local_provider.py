"""
Local filesystem storage provider.
Implements the S3StorageProvider interface for local storage.
"""

import os
import logging
from typing import Optional, Dict, Any, List
from pathlib import Path
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(S3StorageProvider):
    """
    Storage provider that uses the local filesystem.
    Objects live under <base_path>/<bucket>/<key>.
    """

    def __init__(self):
        self.base_path: Optional[Path] = None
        self.bucket_name: Optional[str] = None

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        'Authenticate' by setting the base path.
        In local mode, 'base_path' (or 'endpoint') is the root directory.
        """
        path = credentials.get('base_path') or credentials.get('endpoint')
        if not path:
            return False

        self.base_path = Path(path).expanduser().absolute()
        self.base_path.mkdir(parents=True, exist_ok=True)
        return True

    def create_bucket(self, bucket_name: str, public: bool = False) -> Dict[str, Any]:
        """Create a subdirectory as a bucket."""
        bucket_path = self.base_path / bucket_name
        bucket_path.mkdir(parents=True, exist_ok=True)
        self.bucket_name = bucket_name
        return {
            'bucket_name': bucket_name,
            'endpoint': str(bucket_path),
            'url': f"file://{bucket_path}",
            'public': public,
        }

    def bucket_exists(self, bucket_name: str) -> bool:
        return (self.base_path / bucket_name).is_dir()

    def _bucket_root(self) -> Path:
        if not self.bucket_name:
            raise ValueError("Bucket not set")
        return self.base_path / self.bucket_name

    def _get_path(self, remote_key: str) -> Path:
        """Get absolute local path for a remote key, refusing keys outside the bucket."""
        root = self._bucket_root().resolve()
        path = (root / remote_key.lstrip("/")).resolve()
        if path == root or root not in path.parents:
            raise ValueError(f"Invalid object key: {remote_key!r}")
        return path

    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     cache_control: Optional[str] = None,
                     upsert: bool = False) -> bool:
        try:
            dest_path = self._get_path(remote_key)
            if dest_path.exists() and not upsert:
                logger.warning(f"Object already exists: {remote_key}")
                return False
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(data)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Local upload error: {e}")
            return False

    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        try:
            path = self._get_path(remote_key)
        except ValueError:
            return None
        if not path.is_file():
            return None
        return path.read_bytes()

    def delete_file(self, remote_key: str) -> bool:
        try:
            path = self._get_path(remote_key)
            if path.is_file():
                os.remove(path)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Local delete error: {e}")
            return False

    def file_exists(self, remote_key: str) -> bool:
        try:
            return self._get_path(remote_key).is_file()
        except ValueError:
            return False

    def list_files(self, prefix: Optional[str] = None,
                   limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        bucket_root = self._bucket_root()
        folder = self._folder_prefix(prefix)
        search_path = bucket_root / folder if folder else bucket_root

        if not search_path.is_dir():
            return []

        files = []
        for root, _, filenames in os.walk(search_path):
            for filename in filenames:
                full_path = Path(root) / filename
                stat = full_path.stat()
                files.append({
                    'name': full_path.relative_to(search_path).as_posix(),
                    'Key': full_path.relative_to(bucket_root).as_posix(),
                    'Size': stat.st_size,
                    'LastModified': stat.st_mtime,
                })
        return self._paginate(files, limit, offset)

    def get_bucket_size(self) -> int:
        bucket_root = self._bucket_root()
        total = 0
        if not bucket_root.exists():
            return 0
        for root, _, filenames in os.walk(bucket_root):
            for filename in filenames:
                total += (Path(root) / filename).stat().st_size
        return total

"""
Factory for creating storage provider instances.

Simplifies provider selection and initialization.
"""

import threading
from typing import Dict, Optional
from urllib.parse import quote, unquote

from shared.constants import PUBLIC_OBJECT_PATH
from shared.errors import StorageError
from shared.models import StorageProvider
from .storage_provider import S3StorageProvider
from .cloudflare_r2 import CloudflareR2Provider
from .local_provider import LocalStorageProvider


class StorageProviderFactory:
    """Factory for creating storage provider instances."""

    @staticmethod
    def create(provider_type: StorageProvider) -> S3StorageProvider:
        """
        Create a storage provider instance.

        Raises:
            ValueError: If provider type is not supported
        """
        if provider_type == StorageProvider.CLOUDFLARE_R2:
            return CloudflareR2Provider()

        elif provider_type == StorageProvider.LOCAL:
            return LocalStorageProvider()

        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    @staticmethod
    def get_provider_name(provider_type: StorageProvider) -> str:
        """Get human-readable provider name."""
        names = {
            StorageProvider.CLOUDFLARE_R2: "Cloudflare R2",
            StorageProvider.LOCAL: "Local filesystem",
        }
        return names.get(provider_type, "Unknown")


def open_bucket(config, bucket: str, public: bool = True) -> S3StorageProvider:
    """
    Return an authenticated provider bound to one of the hub buckets.

    The physical bucket name is config.bucket_prefix + bucket; it is created
    when missing.
    """
    provider = StorageProviderFactory.create(config.storage_provider)
    if not provider.authenticate(config.storage_credentials()):
        raise StorageError(
            f"No se pudo conectar con el almacenamiento "
            f"({StorageProviderFactory.get_provider_name(config.storage_provider)})"
        )
    provider.create_bucket(f"{config.bucket_prefix}{bucket}", public=public)
    return provider


def build_public_url(base_url: str, bucket: str, key: str) -> str:
    """Public URL for an object: {base}/storage/v1/object/public/{bucket}/{key}."""
    return f"{base_url.rstrip('/')}{PUBLIC_OBJECT_PATH}/{bucket}/{quote(key)}"


class BucketSet:
    """Lazily opened providers for the hub buckets, keyed by logical bucket name."""

    def __init__(self, config):
        self.config = config
        self._providers: Dict[str, S3StorageProvider] = {}
        self._lock = threading.Lock()

    def get(self, bucket: str) -> S3StorageProvider:
        with self._lock:
            provider = self._providers.get(bucket)
            if provider is None:
                provider = open_bucket(self.config, bucket)
                self._providers[bucket] = provider
            return provider

    def public_url(self, bucket: str, key: str) -> str:
        return build_public_url(self.config.public_base_url, bucket, key)

    def key_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        """Object key of a public URL in `bucket`, or None if it does not point there."""
        if not url:
            return None
        parts = url.split(f"/{bucket}/", 1)
        if len(parts) < 2 or not parts[1]:
            return None
        return unquote(parts[1].split("?", 1)[0])

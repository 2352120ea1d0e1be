"""Factory for configuring the blob storage backend from settings."""

from __future__ import annotations

from typing import Optional

from filestore.config import StorageSettings

from .interfaces import BlobStorageBackend
from .local import LocalStorageBackend
from .s3 import S3StorageBackend


def build_local_backend(settings: StorageSettings, secret_key: str,
                        public_base_url: Optional[str] = None) -> LocalStorageBackend:
    return LocalStorageBackend(settings.local_root, secret_key=secret_key, public_base_url=public_base_url)


def build_s3_backend(settings: StorageSettings) -> Optional[S3StorageBackend]:
    if not settings.s3_bucket_name:
        return None
    return S3StorageBackend(
        bucket=settings.s3_bucket_name,
        region=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        session_token=settings.s3_session_token,
        use_path_style=settings.s3_use_path_style,
        verify_ssl=settings.s3_verify_ssl,
    )


def build_blob_store(settings: StorageSettings, secret_key: str,
                     public_base_url: Optional[str] = None) -> BlobStorageBackend:
    if settings.backend == 's3':
        backend = build_s3_backend(settings)
        if backend is None:
            raise RuntimeError('FILE_STORAGE_BACKEND=s3 but S3_BUCKET_NAME is not configured')
        return backend
    if settings.backend != 'local':
        raise RuntimeError(f"Unknown FILE_STORAGE_BACKEND: {settings.backend}")
    return build_local_backend(settings, secret_key, public_base_url)

"""Blob storage backends (local filesystem and S3) plus key and content-type helpers."""

from .content_type import ContentTypeSniffer
from .factory import build_blob_store, build_local_backend, build_s3_backend
from .interfaces import BlobStorageBackend, StoredObject
from .keys import generate_storage_key, get_file_extension, sanitize_file_name
from .local import BlobLinkExpired, LocalStorageBackend
from .s3 import S3StorageBackend

__all__ = [
    'BlobLinkExpired',
    'BlobStorageBackend',
    'ContentTypeSniffer',
    'LocalStorageBackend',
    'S3StorageBackend',
    'StoredObject',
    'build_blob_store',
    'build_local_backend',
    'build_s3_backend',
    'generate_storage_key',
    'get_file_extension',
    'sanitize_file_name',
]

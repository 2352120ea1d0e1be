"""
Application configuration.

Values are read from the environment once at startup and frozen; the
resulting objects are handed to the services explicitly.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

BYTES_PER_MB = 1_000_000

DEFAULT_MAX_FILE_SIZE = 104_857_600
DEFAULT_BLOCKED_EXTENSIONS = 'exe,bat,cmd,sh,msi,com,scr,vbs,jar,ps1'
DEFAULT_PRESIGN_TTL_SECONDS = 3600
DEFAULT_BULK_MAX_FILES = 10
DEFAULT_KEY_SUFFIX_LENGTH = 8
DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ('true', '1', 'yes')


def parse_extensions(value: Optional[str]) -> FrozenSet[str]:
    """Normalize a comma separated extension list: lower-case, no leading dot."""
    if not value:
        return frozenset()
    parts = (part.strip().lower().lstrip('.') for part in value.split(','))
    return frozenset(part for part in parts if part)


@dataclass(frozen=True)
class FileStorageConfig:
    """Limits and defaults applied by the storage orchestrator."""

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    blocked_extensions: FrozenSet[str] = field(default_factory=lambda: parse_extensions(DEFAULT_BLOCKED_EXTENSIONS))
    presigned_url_expiry_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS
    bulk_upload_max_files: int = DEFAULT_BULK_MAX_FILES
    key_suffix_length: int = DEFAULT_KEY_SUFFIX_LENGTH
    default_content_type: str = DEFAULT_CONTENT_TYPE

    def __post_init__(self):
        if self.max_file_size <= 0:
            raise ValueError('max_file_size must be positive')
        if self.bulk_upload_max_files <= 0:
            raise ValueError('bulk_upload_max_files must be positive')
        if not 1 <= self.key_suffix_length <= 32:
            raise ValueError('key_suffix_length must be between 1 and 32')
        # Accept any iterable from callers but always store a normalized frozenset
        object.__setattr__(self, 'blocked_extensions', self._normalize(self.blocked_extensions))

    @staticmethod
    def _normalize(extensions: Iterable[str]) -> FrozenSet[str]:
        return frozenset(ext.strip().lower().lstrip('.') for ext in extensions if ext and ext.strip())

    @property
    def max_file_size_mb(self) -> int:
        return self.max_file_size // BYTES_PER_MB


@dataclass(frozen=True)
class StorageSettings:
    backend: str = 'local'
    local_root: str = './data/blobs'
    s3_bucket_name: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_session_token: Optional[str] = None
    s3_use_path_style: bool = False
    s3_verify_ssl: bool = True
    create_bucket: bool = True


def load_file_storage_config() -> FileStorageConfig:
    return FileStorageConfig(
        max_file_size=int(os.environ.get('FILE_STORAGE_MAX_FILE_SIZE', str(DEFAULT_MAX_FILE_SIZE))),
        blocked_extensions=parse_extensions(os.environ.get('FILE_STORAGE_BLOCKED_EXTENSIONS', DEFAULT_BLOCKED_EXTENSIONS)),
        presigned_url_expiry_seconds=int(os.environ.get('FILE_STORAGE_PRESIGN_TTL_SECONDS', str(DEFAULT_PRESIGN_TTL_SECONDS))),
        bulk_upload_max_files=int(os.environ.get('FILE_STORAGE_BULK_MAX_FILES', str(DEFAULT_BULK_MAX_FILES))),
        key_suffix_length=int(os.environ.get('FILE_STORAGE_KEY_SUFFIX_LENGTH', str(DEFAULT_KEY_SUFFIX_LENGTH))),
        default_content_type=(os.environ.get('FILE_STORAGE_DEFAULT_CONTENT_TYPE') or DEFAULT_CONTENT_TYPE).strip(),
    )


def load_storage_settings() -> StorageSettings:
    return StorageSettings(
        backend=(os.environ.get('FILE_STORAGE_BACKEND') or 'local').strip().lower() or 'local',
        local_root=os.environ.get('FILE_STORAGE_LOCAL_ROOT', './data/blobs'),
        s3_bucket_name=os.environ.get('S3_BUCKET_NAME'),
        s3_region=os.environ.get('S3_REGION'),
        s3_endpoint_url=os.environ.get('S3_ENDPOINT_URL'),
        s3_access_key_id=os.environ.get('S3_ACCESS_KEY_ID'),
        s3_secret_access_key=os.environ.get('S3_SECRET_ACCESS_KEY'),
        s3_session_token=os.environ.get('S3_SESSION_TOKEN'),
        s3_use_path_style=_env_bool('S3_USE_PATH_STYLE', 'false'),
        s3_verify_ssl=_env_bool('S3_VERIFY_SSL', 'true'),
        create_bucket=_env_bool('FILE_STORAGE_CREATE_BUCKET', 'true'),
    )

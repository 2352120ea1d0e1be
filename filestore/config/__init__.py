"""Configuration package for the file storage service."""

from .app_config import FileStorageConfig, StorageSettings, load_file_storage_config, load_storage_settings

__all__ = [
    'FileStorageConfig',
    'StorageSettings',
    'load_file_storage_config',
    'load_storage_settings',
]

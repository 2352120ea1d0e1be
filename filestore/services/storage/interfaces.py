"""Blob storage contract and shared dataclasses for storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Optional


@dataclass
class StoredObject:
    """Result of storing an object."""

    key: str
    size: Optional[int] = None
    content_type: Optional[str] = None


class BlobStorageBackend(ABC):
    """Key-addressed binary object storage."""

    name = 'base'

    @abstractmethod
    def save_fileobj(self, fileobj: BinaryIO, key: str, size: int,
                     content_type: Optional[str] = None) -> StoredObject:
        """Write `size` bytes from `fileobj` under `key`."""

    @abstractmethod
    def open_stream(self, key: str) -> BinaryIO:
        """Open a readable stream for `key`. The caller must close it."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the object stored under `key`. Missing objects are not an error."""

    @abstractmethod
    def presign_url(self, key: str, expires_seconds: int, method: str = 'GET') -> str:
        """Time-bounded, credential-free URL for `key`."""

    def ensure_bucket(self) -> None:
        """Create the backing container if the backend needs one."""

"""Local filesystem storage backend."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from .interfaces import BlobStorageBackend, StoredObject

BLOB_URL_PATH = '/api/v1/blobs'
_TOKEN_SALT = 'blob-download'


class BlobLinkExpired(BadSignature):
    """Signed blob link is authentic but past its expiry."""


def _normalize_key(key: str) -> str:
    key = (key or '').replace('\\', '/').strip()
    while '//' in key:
        key = key.replace('//', '/')
    return key.lstrip('/')


def local_path_from_key(local_root: str, key: str) -> str:
    """Resolve a storage key under local_root and prevent path traversal."""
    safe_key = _normalize_key(key)
    if not safe_key:
        raise ValueError('Local storage key is empty')
    root = Path(local_root).resolve()
    candidate = (root / Path(*safe_key.split('/'))).resolve()
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Local storage key resolves outside root: {key}") from exc
    return str(candidate)


class LocalStorageBackend(BlobStorageBackend):
    """
    Local filesystem implementation for the storage contract.

    Presigned URLs are signed tokens served by the blob download route; the
    token carries the key and its lifetime.
    """

    name = 'local'

    def __init__(self, root: str, secret_key: str, public_base_url: Optional[str] = None):
        self.root = str(Path(root))
        self.public_base_url = (public_base_url or '').rstrip('/')
        self._serializer = URLSafeTimedSerializer(secret_key, salt=_TOKEN_SALT)

    def ensure_bucket(self) -> None:
        Path(self.root).mkdir(parents=True, exist_ok=True)

    def resolve_path(self, key: str) -> str:
        return local_path_from_key(self.root, key)

    def save_fileobj(self, fileobj: BinaryIO, key: str, size: int,
                     content_type: Optional[str] = None) -> StoredObject:
        dst = self.resolve_path(key)
        Path(dst).parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file so readers never observe a partial object
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(dst), prefix='.upload-')
        try:
            with os.fdopen(fd, 'wb') as out_f:
                shutil.copyfileobj(fileobj, out_f)
            os.replace(tmp_path, dst)
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise
        return StoredObject(key=key, size=os.path.getsize(dst), content_type=content_type)

    def open_stream(self, key: str) -> BinaryIO:
        return open(self.resolve_path(key), 'rb')

    def delete(self, key: str) -> None:
        try:
            os.remove(self.resolve_path(key))
        except FileNotFoundError:
            pass

    def presign_url(self, key: str, expires_seconds: int, method: str = 'GET') -> str:
        if method.upper() != 'GET':
            raise ValueError(f"Local backend only signs GET links, not {method}")
        token = self._serializer.dumps({'key': _normalize_key(key), 'ttl': int(expires_seconds)})
        return f"{self.public_base_url}{BLOB_URL_PATH}/{token}"

    def resolve_token(self, token: str) -> str:
        """Return the key a signed link points at. Raises BadSignature or BlobLinkExpired."""
        payload, signed_at = self._serializer.loads(token, return_timestamp=True)
        age = time.time() - signed_at.timestamp()
        if age > int(payload.get('ttl', 0)):
            raise BlobLinkExpired('Blob link expired')
        return payload['key']

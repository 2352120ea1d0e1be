"""Blob storage on S3 or any S3-compatible endpoint such as MinIO."""

import logging
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .interfaces import BlobStorageBackend, StoredObject

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = ('404', 'NoSuchBucket', 'NotFound')
_EXISTING_BUCKET_CODES = ('BucketAlreadyOwnedByYou', 'BucketAlreadyExists')
_PRESIGN_OPERATIONS = {'GET': 'get_object', 'PUT': 'put_object', 'DELETE': 'delete_object'}


def _error_code(exc: ClientError) -> str:
    return str(((exc.response or {}).get('Error') or {}).get('Code') or '')


class S3StorageBackend(BlobStorageBackend):
    """
    Objects live in a single bucket under their storage key.

    The boto3 client is created on first use so that building the app never
    needs network access or credentials.
    """

    name = 's3'

    def __init__(self, *, bucket: str, region: Optional[str] = None, endpoint_url: Optional[str] = None,
                 access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None,
                 session_token: Optional[str] = None, use_path_style: bool = False,
                 verify_ssl: bool = True, client=None):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.verify_ssl = verify_ssl
        self._credentials = {
            'aws_access_key_id': access_key_id,
            'aws_secret_access_key': secret_access_key,
            'aws_session_token': session_token,
        }
        self._client = client

    def _client_options(self) -> dict:
        # Unset values fall through to the default boto3 credential chain
        options = {'region_name': self.region, 'endpoint_url': self.endpoint_url, **self._credentials}
        options = {name: value for name, value in options.items() if value}
        options['verify'] = self.verify_ssl
        options['config'] = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path' if self.use_path_style else 'auto'},
            retries={'max_attempts': 3, 'mode': 'standard'},
        )
        return options

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client('s3', **self._client_options())
        return self._client

    def ensure_bucket(self) -> None:
        """Create the bucket unless it already exists. Other head/create errors propagate."""
        client = self._get_client()
        try:
            client.head_bucket(Bucket=self.bucket)
            logger.debug(f"S3 bucket {self.bucket} already exists")
            return
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise

        params = {'Bucket': self.bucket}
        # us-east-1 rejects an explicit location constraint
        if self.region and self.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
        try:
            client.create_bucket(**params)
            logger.info(f"Created S3 bucket: {self.bucket}")
        except ClientError as exc:
            if _error_code(exc) not in _EXISTING_BUCKET_CODES:
                raise
            logger.debug(f"S3 bucket {self.bucket} was created concurrently")

    def save_fileobj(self, fileobj: BinaryIO, key: str, size: int,
                     content_type: Optional[str] = None) -> StoredObject:
        extra_args = {'ContentType': content_type} if content_type else None
        self._get_client().upload_fileobj(fileobj, self.bucket, key, ExtraArgs=extra_args)
        return StoredObject(key=key, size=size, content_type=content_type)

    def open_stream(self, key: str) -> BinaryIO:
        return self._get_client().get_object(Bucket=self.bucket, Key=key)['Body']

    def delete(self, key: str) -> None:
        self._get_client().delete_object(Bucket=self.bucket, Key=key)

    def presign_url(self, key: str, expires_seconds: int, method: str = 'GET') -> str:
        try:
            operation = _PRESIGN_OPERATIONS[method.upper()]
        except KeyError:
            raise ValueError(f"Unsupported presign method: {method}") from None
        return self._get_client().generate_presigned_url(
            operation,
            Params={'Bucket': self.bucket, 'Key': key},
            ExpiresIn=int(expires_seconds),
        )

"""
Custom exceptions for file storage operations.

Every domain error carries the HTTP status and error code the API boundary
reports for it.
"""

from typing import Optional

GENERIC_ERROR_MESSAGE = 'An unexpected error occurred. Please contact support.'


class FileStorageError(Exception):
    """Base exception for file storage errors."""

    status_code = 500
    error_code = 'INTERNAL_SERVER_ERROR'


class ValidationError(FileStorageError):
    """Invalid request: empty file, blocked extension, oversized batch."""

    status_code = 400
    error_code = 'BAD_REQUEST'


class PayloadTooLargeError(FileStorageError):
    status_code = 413
    error_code = 'FILE_TOO_LARGE'


class StorageLimitExceededError(FileStorageError):
    """Upload would push the project over its quota."""

    status_code = 507
    error_code = 'STORAGE_LIMIT_EXCEEDED'


class EntityNotFoundError(FileStorageError):
    """Project or user does not exist."""

    status_code = 404
    error_code = 'ENTITY_NOT_FOUND'


class ResourceNotFoundError(FileStorageError):
    status_code = 404
    error_code = 'RESOURCE_NOT_FOUND'


class AccessDeniedError(FileStorageError):
    status_code = 403
    error_code = 'ACCESS_DENIED'


class MisconfiguredAccessError(AccessDeniedError):
    """Resource has no allowed roles, so nobody may read it."""

    error_code = 'ACCESS_MISCONFIGURED'


class ResourceNotActiveError(FileStorageError):
    status_code = 400
    error_code = 'RESOURCE_NOT_ACTIVE'


class StorageBackendError(FileStorageError):
    """Blob store failure, wrapped with the operation context."""

    status_code = 500
    error_code = 'STORAGE_OPERATION_FAILED'

    def __init__(self, message: str, operation: str = None, project_id: Optional[int] = None,
                 resource_id: Optional[int] = None, key: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.project_id = project_id
        self.resource_id = resource_id
        self.key = key

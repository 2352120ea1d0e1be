"""
Storage orchestration: keeps the blob store and the metadata store consistent.

Upload and delete run as an explicit sequence of steps under the project
lock held by the quota ledger:

    upload: lock project -> resolve caller -> resolve allowed roles
            -> check quota -> generate key -> detect content type -> write blob
            -> insert resource -> recompute usage -> commit -> unlock
    delete: resolve resource -> resolve caller -> authorize
            -> (already deleted: stop) -> lock project -> delete blob
            -> soft-delete resource -> recompute usage -> commit -> unlock

A failed blob write leaves no metadata behind. A metadata failure after the
blob write rolls back, releases the lock and then removes the new blob; if
that removal fails too, the orphaned key is logged. A metadata failure after
a blob delete leaves the resource ACTIVE with a dangling key, which is
logged at ERROR.
"""

import io
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Iterable, Iterator, List, Optional

from filestore.config import FileStorageConfig
from filestore.models import Resource, ResourceStatus, ResourceType

from . import access
from .exceptions import (
    GENERIC_ERROR_MESSAGE,
    FileStorageError,
    PayloadTooLargeError,
    ResourceNotActiveError,
    StorageBackendError,
    ValidationError,
)
from .metadata import MetadataStore
from .quota import QuotaLedger
from .storage import BlobStorageBackend, ContentTypeSniffer, generate_storage_key, get_file_extension

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


@dataclass
class UploadedContent:
    """A file handed to the orchestrator: name, declared type and a seekable stream."""

    file_name: str
    stream: BinaryIO
    size: int
    content_type: Optional[str] = None

    @classmethod
    def from_bytes(cls, file_name: str, data: bytes, content_type: Optional[str] = None) -> 'UploadedContent':
        return cls(file_name=file_name, stream=io.BytesIO(data), size=len(data), content_type=content_type)

    @classmethod
    def from_file_storage(cls, file_storage) -> 'UploadedContent':
        """Wrap a werkzeug FileStorage from request.files."""
        stream = file_storage.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return cls(
            file_name=file_storage.filename or '',
            stream=stream,
            size=size,
            content_type=file_storage.mimetype or None,
        )


@dataclass
class FileDownload:
    """
    An open blob stream plus the metadata needed to serve it.

    Use as a context manager or consume iter_chunks(); both close the stream
    on every exit path.
    """

    file_name: str
    content_type: str
    size: Optional[int]
    stream: BinaryIO

    def iter_chunks(self, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.stream.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def read(self) -> bytes:
        with self:
            return self.stream.read()

    def close(self) -> None:
        self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


@dataclass
class PresignedUrl:
    url: str
    expires_in: int

    def to_dict(self):
        return {'url': self.url, 'expiresIn': self.expires_in}


@dataclass
class ResourcePage:
    items: List[dict]
    page: int
    per_page: int
    total: int
    pages: int

    def to_dict(self):
        return {
            'resources': self.items,
            'pagination': {
                'page': self.page,
                'per_page': self.per_page,
                'total': self.total,
                'total_pages': self.pages,
                'has_next': self.page < self.pages,
                'has_prev': self.page > 1,
            },
        }


class UploadStatus(str, Enum):
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


@dataclass
class UploadOutcome:
    name: str
    status: UploadStatus
    resource: Optional[Resource] = None
    error: Optional[str] = None

    def to_dict(self):
        data = self.resource.to_response_dict() if self.resource is not None else {
            'id': None, 'name': self.name, 'size': None, 'type': None, 'uploadedAt': None,
        }
        data['status'] = self.status.value
        data['error'] = self.error
        return data


@dataclass
class FileStorageService:
    """Coordinates access control, quota accounting and both stores."""

    config: FileStorageConfig
    blob_store: BlobStorageBackend
    metadata: MetadataStore = field(default_factory=MetadataStore)
    ledger: Optional[QuotaLedger] = None
    sniffer: ContentTypeSniffer = field(default_factory=ContentTypeSniffer)

    def __post_init__(self):
        if self.ledger is None:
            self.ledger = QuotaLedger(self.metadata)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def validate_content(self, content: UploadedContent) -> None:
        """Checks that need no store access: emptiness, size, extension."""
        if content.size <= 0:
            raise ValidationError('File cannot be empty')

        if content.size > self.config.max_file_size:
            raise PayloadTooLargeError(
                f"File size {content.size} bytes exceeds maximum allowed size of "
                f"{self.config.max_file_size_mb} MB ({self.config.max_file_size} bytes)")

        extension = get_file_extension(content.file_name)
        if extension and extension in self.config.blocked_extensions:
            raise ValidationError(f"File type is not allowed: {extension}. File: {content.file_name}")

    def upload_file(self, content: UploadedContent, project_id: int, user_id: int,
                    allowed_roles: Optional[Iterable] = None) -> Resource:
        self.validate_content(content)

        key = None
        blob_written = False
        try:
            with self.ledger.locked_project(project_id) as project:
                user = self.metadata.find_user(user_id)
                roles = access.resolve_allowed_roles(allowed_roles, user)
                self.ledger.check_capacity(project, content.size)

                key = generate_storage_key(project_id, content.file_name, self.config.key_suffix_length)
                content_type = self._detect_content_type(content)
                self._write_blob(content, key, content_type, project_id)
                blob_written = True

                resource = Resource(
                    name=content.file_name,
                    key=key,
                    size=content.size,
                    content_type=content_type,
                    type=ResourceType.from_content_type(content_type).value,
                    status=ResourceStatus.ACTIVE.value,
                    allowed_roles=roles,
                    project=project,
                    created_by=user,
                    updated_by=user,
                )
                self.metadata.add(resource)
                self.ledger.recalculate(project_id)
        except Exception:
            if blob_written:
                self._discard_orphan(key, project_id)
            raise

        logger.info(f"File uploaded successfully: {key} for project {project_id}")
        return resource

    def _detect_content_type(self, content: UploadedContent) -> str:
        detected = None
        try:
            detected = self.sniffer.detect(content.stream, content.file_name)
        except (OSError, ValueError) as e:
            logger.warning(f"Content type detection failed for {content.file_name}: {e}")
        return detected or content.content_type or self.config.default_content_type

    def _write_blob(self, content: UploadedContent, key: str, content_type: str, project_id: int) -> None:
        try:
            content.stream.seek(0)
            self.blob_store.save_fileobj(content.stream, key, content.size, content_type=content_type)
        except Exception as e:
            logger.error(f"Error uploading file {content.file_name} to project {project_id} (key={key})", exc_info=True)
            raise StorageBackendError('Failed to upload file', operation='upload',
                                      project_id=project_id, key=key) from e

    def _discard_orphan(self, key: str, project_id: int) -> None:
        try:
            self.blob_store.delete(key)
            logger.warning(f"Removed blob {key} after failed metadata write in project {project_id}")
        except Exception:
            logger.error(f"Orphaned blob left in storage: key={key}, project={project_id}", exc_info=True)

    def bulk_upload(self, files: List[UploadedContent], project_id: int, user_id: int,
                    allowed_roles: Optional[Iterable] = None) -> List[UploadOutcome]:
        if len(files) > self.config.bulk_upload_max_files:
            raise ValidationError(
                f"Maximum {self.config.bulk_upload_max_files} files can be uploaded at once")

        allowed_roles = list(allowed_roles or [])
        outcomes = []
        for content in files:
            try:
                resource = self.upload_file(content, project_id, user_id, allowed_roles)
                outcomes.append(UploadOutcome(name=content.file_name, status=UploadStatus.SUCCESS, resource=resource))
            except FileStorageError as e:
                if e.status_code >= 500:
                    logger.error(f"Failed to upload file {content.file_name}: {e}", exc_info=True)
                    error = GENERIC_ERROR_MESSAGE
                else:
                    logger.warning(f"Failed to upload file {content.file_name}: {e}")
                    error = str(e)
                outcomes.append(UploadOutcome(name=content.file_name, status=UploadStatus.FAILED, error=error))
            except Exception:
                # Internal detail stays in the log, never in the outcome
                logger.error(f"Failed to upload file {content.file_name}", exc_info=True)
                outcomes.append(UploadOutcome(name=content.file_name, status=UploadStatus.FAILED,
                                              error=GENERIC_ERROR_MESSAGE))
        return outcomes

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _authorize_read(self, resource_id: int, project_id: int, user_id: int) -> Resource:
        resource = self.metadata.find_resource(resource_id, project_id)
        user = self.metadata.find_user(user_id)
        access.check_read_access(resource, user)
        return resource

    def download_file(self, resource_id: int, project_id: int, user_id: int) -> FileDownload:
        logger.info(f"Downloading resource {resource_id} from project {project_id} for user {user_id}")
        resource = self._authorize_read(resource_id, project_id, user_id)

        if not resource.is_active:
            raise ResourceNotActiveError(
                f"Resource {resource_id} is not active (status: {resource.status}) in project {project_id}")

        try:
            stream = self.blob_store.open_stream(resource.key)
        except Exception as e:
            logger.error(f"Failed to download file: resourceId={resource_id}, projectId={project_id}", exc_info=True)
            raise StorageBackendError(
                f"Failed to download file: resourceId={resource_id}, projectId={project_id}",
                operation='download', project_id=project_id, resource_id=resource_id, key=resource.key) from e

        return FileDownload(
            file_name=resource.name,
            content_type=resource.content_type or self.config.default_content_type,
            size=resource.size,
            stream=stream,
        )

    def generate_presigned_url(self, resource_id: int, project_id: int, user_id: int) -> PresignedUrl:
        resource = self._authorize_read(resource_id, project_id, user_id)
        if resource.key is None:
            raise ResourceNotActiveError(
                f"Resource {resource_id} is not active (status: {resource.status}) in project {project_id}")

        expires_in = self.config.presigned_url_expiry_seconds
        try:
            url = self.blob_store.presign_url(resource.key, expires_in, method='GET')
        except Exception as e:
            logger.error(f"Failed to generate presigned URL: resourceId={resource_id}, projectId={project_id}", exc_info=True)
            raise StorageBackendError(
                f"Failed to generate download URL: resourceId={resource_id}, projectId={project_id}",
                operation='presign', project_id=project_id, resource_id=resource_id, key=resource.key) from e

        logger.info(f"Generated presigned URL for resource {resource_id} in project {project_id}")
        return PresignedUrl(url=url, expires_in=expires_in)

    def get_project_files(self, project_id: int, user_id: int, page: int = 1, per_page: int = 20) -> ResourcePage:
        self.metadata.find_user(user_id)
        self.metadata.find_project(project_id)

        pagination = self.metadata.list_active_resources(project_id, page=page, per_page=per_page)
        return ResourcePage(
            items=[resource.to_summary_dict() for resource in pagination.items],
            page=pagination.page,
            per_page=pagination.per_page,
            total=pagination.total or 0,
            pages=pagination.pages,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_file(self, resource_id: int, project_id: int, user_id: int) -> None:
        logger.info(f"Deleting resource {resource_id} from project {project_id} by user {user_id}")

        resource = self.metadata.find_resource(resource_id, project_id)
        user = self.metadata.find_user(user_id)
        access.check_delete_permission(resource, user)

        if not resource.is_active:
            logger.warning(f"Resource {resource_id} is already deleted in project {project_id}")
            return

        removed_key = None
        try:
            with self.ledger.locked_project(project_id):
                # A concurrent delete may have won the lock first
                self.metadata.refresh(resource)
                if not resource.is_active:
                    logger.warning(f"Resource {resource_id} is already deleted in project {project_id}")
                    return

                if resource.key is not None:
                    key = resource.key
                    self._delete_blob(resource, project_id)
                    removed_key = key

                resource.mark_deleted(user)
                self.metadata.add(resource)
                self.ledger.recalculate(project_id)
        except Exception:
            if removed_key is not None:
                logger.error(
                    f"Dangling resource: blob {removed_key} was deleted but resource {resource_id} "
                    f"in project {project_id} is still ACTIVE")
            raise

        logger.info(f"Resource {resource_id} deleted successfully from project {project_id}")

    def _delete_blob(self, resource: Resource, project_id: int) -> None:
        try:
            self.blob_store.delete(resource.key)
        except Exception as e:
            logger.error(f"Failed to delete file: resourceId={resource.id}, projectId={project_id}", exc_info=True)
            raise StorageBackendError(
                f"Failed to delete file: resourceId={resource.id}, projectId={project_id}",
                operation='delete', project_id=project_id, resource_id=resource.id, key=resource.key) from e
        logger.info(f"File removed from storage: {resource.key}")

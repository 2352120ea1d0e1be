"""
Resource database model.

A resource is the metadata record of one stored file. Deletion is soft:
the record stays, the blob and its key go away.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from filestore.database import db


class ResourceStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    DELETED = 'DELETED'


class ResourceType(str, Enum):
    """Coarse category derived from a content type."""

    IMAGE = 'IMAGE'
    VIDEO = 'VIDEO'
    AUDIO = 'AUDIO'
    DOCUMENT = 'DOCUMENT'
    ARCHIVE = 'ARCHIVE'
    OTHER = 'OTHER'

    @classmethod
    def from_content_type(cls, content_type: Optional[str]) -> 'ResourceType':
        if not content_type:
            return cls.OTHER
        mime = content_type.split(';', 1)[0].strip().lower()
        major = mime.split('/', 1)[0]
        if major == 'image':
            return cls.IMAGE
        if major == 'video':
            return cls.VIDEO
        if major == 'audio':
            return cls.AUDIO
        if mime in _ARCHIVE_TYPES:
            return cls.ARCHIVE
        if major == 'text' or mime in _DOCUMENT_TYPES or mime.startswith('application/vnd.openxmlformats-officedocument'):
            return cls.DOCUMENT
        return cls.OTHER


_ARCHIVE_TYPES = frozenset({
    'application/zip',
    'application/x-tar',
    'application/gzip',
    'application/x-gzip',
    'application/x-7z-compressed',
    'application/x-rar-compressed',
    'application/vnd.rar',
    'application/x-bzip2',
    'application/x-xz',
})

_DOCUMENT_TYPES = frozenset({
    'application/pdf',
    'application/json',
    'application/xml',
    'application/rtf',
    'application/msword',
    'application/vnd.ms-excel',
    'application/vnd.ms-powerpoint',
    'application/vnd.oasis.opendocument.text',
    'application/vnd.oasis.opendocument.spreadsheet',
    'application/vnd.oasis.opendocument.presentation',
})


class Resource(db.Model):
    """Stored file metadata, owned by exactly one project."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(500), nullable=False)  # Original uploaded file name
    key = db.Column(db.String(1024), nullable=True, unique=True)  # Blob locator, None once deleted
    content_type = db.Column(db.String(255), nullable=True)
    size = db.Column(db.BigInteger, nullable=False, default=0)
    type = db.Column(db.String(20), nullable=False, default=ResourceType.OTHER.value)
    status = db.Column(db.String(20), nullable=False, default=ResourceStatus.ACTIVE.value, index=True)
    allowed_roles = db.Column(db.JSON, nullable=False, default=list)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    updated_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = db.relationship('Project', back_populates='resources')
    created_by = db.relationship('User', foreign_keys=[created_by_id])
    updated_by = db.relationship('User', foreign_keys=[updated_by_id])

    @property
    def is_active(self) -> bool:
        return self.status == ResourceStatus.ACTIVE.value

    @property
    def allowed_role_values(self) -> List[str]:
        return list(self.allowed_roles or [])

    def mark_deleted(self, user) -> None:
        """Soft delete: drop the blob reference and zero the size."""
        self.key = None
        self.size = 0
        self.status = ResourceStatus.DELETED.value
        self.updated_by = user

    def to_response_dict(self):
        """Shape returned after an upload."""
        return {
            'id': self.id,
            'name': self.name,
            'size': self.size,
            'type': self.type,
            'uploadedAt': self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary_dict(self):
        """Shape used by project listings; creator is reduced to a display name."""
        return {
            'id': self.id,
            'name': self.name,
            'size': self.size,
            'type': self.type,
            'contentType': self.content_type,
            'createdBy': self.created_by.nickname if self.created_by else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"Resource('{self.name}', status={self.status}, size={self.size})"

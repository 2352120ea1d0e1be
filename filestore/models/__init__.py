"""
Database models package for the file storage service.

- User accounts and their role tokens
- Projects carrying the storage quota
- Resources (stored file metadata)
"""

from filestore.database import db

from .user import User, UserRole
from .project import Project
from .resource import Resource, ResourceStatus, ResourceType

__all__ = [
    'db',
    'User',
    'UserRole',
    'Project',
    'Resource',
    'ResourceStatus',
    'ResourceType',
]

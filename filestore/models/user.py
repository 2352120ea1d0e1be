"""
User database model.

Users are provisioned out of band; the storage service only reads them to
attribute resources and evaluate role-based access.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Set

from filestore.database import db


class UserRole(str, Enum):
    """Fixed role vocabulary."""

    OWNER = 'OWNER'
    MANAGER = 'MANAGER'
    DEVELOPER = 'DEVELOPER'
    DESIGNER = 'DESIGNER'
    TESTER = 'TESTER'
    ANALYST = 'ANALYST'
    VIEWER = 'VIEWER'

    @classmethod
    def parse(cls, token) -> 'UserRole':
        """Parse a role token case-insensitively. Raises ValueError for unknown tokens."""
        if isinstance(token, UserRole):
            return token
        return cls(str(token).strip().upper())


ELEVATED_ROLES = frozenset({UserRole.MANAGER, UserRole.OWNER})


class User(db.Model):
    """User model with display name and role tokens."""

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    nickname = db.Column(db.String(100), nullable=False)
    roles = db.Column(db.JSON, nullable=False, default=list)  # List of UserRole values
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def role_set(self) -> Set[UserRole]:
        """Roles as enum members; unknown stored tokens are ignored."""
        result = set()
        for token in self.roles or []:
            try:
                result.add(UserRole.parse(token))
            except ValueError:
                continue
        return result

    def set_roles(self, roles: Iterable) -> None:
        self.roles = sorted({UserRole.parse(role).value for role in roles})

    def has_any_role(self, roles: Iterable[UserRole]) -> bool:
        return not self.role_set.isdisjoint(roles)

    def __repr__(self):
        return f"User('{self.username}', roles={self.roles})"

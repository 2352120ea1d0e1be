"""
Role-based access decisions for resources.

Read (download and presigned links) is granted when the caller shares at
least one role with the resource. Delete is granted to the creator and to
elevated roles. The allowed roles of a new resource come from the upload
request or, failing that, from the uploader.
"""

import logging
from typing import Iterable, List, Optional

from filestore.models import Resource, User, UserRole
from filestore.models.user import ELEVATED_ROLES

from .exceptions import AccessDeniedError, MisconfiguredAccessError

logger = logging.getLogger(__name__)


def resolve_allowed_roles(requested: Optional[Iterable], user: User) -> List[str]:
    """
    Allowed roles for a new resource.

    Unknown tokens in the request are dropped with a warning. When the
    request names no usable role, the uploader's own roles apply.
    """
    requested = list(requested or [])
    accepted = set()
    for token in requested:
        try:
            accepted.add(UserRole.parse(token).value)
        except ValueError:
            logger.warning(f"Role {token!r} is not a known role, skipping")

    if accepted:
        return sorted(accepted)

    if requested:
        logger.warning(f"No valid roles in request {requested!r}; using roles of user {user.id}")
    return sorted(role.value for role in user.role_set)


def check_read_access(resource: Resource, user: User) -> None:
    """Raise unless `user` may download or link `resource`."""
    allowed = set()
    for token in resource.allowed_role_values:
        try:
            allowed.add(UserRole.parse(token))
        except ValueError:
            continue

    if not allowed:
        raise MisconfiguredAccessError(
            f"Resource {resource.id} has no allowed roles configured in project {resource.project_id}")

    if not user.has_any_role(allowed):
        logger.warning(f"User {user.id} denied read access to resource {resource.id}")
        raise AccessDeniedError(
            f"User {user.id} does not have permission to access resource {resource.id} "
            f"in project {resource.project_id}")


def can_delete(resource: Resource, user: User) -> bool:
    is_creator = resource.created_by_id == user.id
    return is_creator or user.has_any_role(ELEVATED_ROLES)


def check_delete_permission(resource: Resource, user: User) -> None:
    if not can_delete(resource, user):
        logger.warning(f"User {user.id} denied delete of resource {resource.id}")
        raise AccessDeniedError(
            f"User {user.id} cannot delete resource {resource.id} in project {resource.project_id}. "
            "Only file creator or project manager can delete files")

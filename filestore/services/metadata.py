"""
Metadata store backed by SQLAlchemy.

Thin repository over the Flask-SQLAlchemy session: lookups that raise the
domain not-found errors, the locked project read, the usage aggregate and
the paginated listing.
"""

from sqlalchemy import func, select, update
from sqlalchemy.orm import joinedload

from filestore.database import db
from filestore.models import Project, Resource, ResourceStatus, User

from .exceptions import EntityNotFoundError, ResourceNotFoundError

MAX_PER_PAGE = 100


class MetadataStore:
    """Project, resource and user persistence for the storage orchestrator."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        # db.session is scoped to the current app context, so each request thread gets its own
        return self._session if self._session is not None else db.session

    def find_project(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise EntityNotFoundError(f"Project not found: projectId={project_id}")
        return project

    def find_project_for_update(self, project_id: int) -> Project:
        """Read the project row with an exclusive row lock (no-op on SQLite)."""
        stmt = (
            select(Project)
            .where(Project.id == project_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        project = self.session.execute(stmt).scalar_one_or_none()
        if project is None:
            raise EntityNotFoundError(f"Project not found: projectId={project_id}")
        return project

    def find_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise EntityNotFoundError(f"User not found: userId={user_id}")
        return user

    def find_resource(self, resource_id: int, project_id: int) -> Resource:
        stmt = select(Resource).where(Resource.id == resource_id, Resource.project_id == project_id)
        resource = self.session.execute(stmt).scalar_one_or_none()
        if resource is None:
            raise ResourceNotFoundError(
                f"Resource {resource_id} not found or doesn't belong to project {project_id}")
        return resource

    def refresh(self, instance) -> None:
        self.session.refresh(instance)

    def add(self, instance) -> None:
        self.session.add(instance)
        self.session.flush()

    def sum_active_resource_sizes(self, project_id: int) -> int:
        stmt = (
            select(func.coalesce(func.sum(Resource.size), 0))
            .where(Resource.project_id == project_id, Resource.status == ResourceStatus.ACTIVE.value)
        )
        return int(self.session.execute(stmt).scalar() or 0)

    def update_project_storage_size(self, project_id: int, size: int) -> int:
        """Write the derived usage for one project; returns the number of rows updated."""
        result = self.session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(storage_size=size)
        )
        return result.rowcount

    def project_ids(self):
        return list(self.session.execute(select(Project.id).order_by(Project.id)).scalars())

    def list_active_resources(self, project_id: int, page: int = 1, per_page: int = 20):
        stmt = (
            select(Resource)
            .options(joinedload(Resource.created_by))
            .where(Resource.project_id == project_id, Resource.status == ResourceStatus.ACTIVE.value)
            .order_by(Resource.created_at.desc(), Resource.id.desc())
        )
        return db.paginate(stmt, page=page, per_page=per_page, max_per_page=MAX_PER_PAGE, error_out=False)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

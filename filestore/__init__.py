"""Project-scoped file storage service with quotas and role-based access."""

"""Service layer: storage orchestration, quota accounting and access control."""

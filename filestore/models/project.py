"""
Project database model.

A project scopes a set of resources and carries the storage quota.
"""

from datetime import datetime

from filestore.database import db


class Project(db.Model):
    """Project with authoritative storage usage and a configured quota."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    # Sum of ACTIVE resource sizes, recomputed after every committed mutation
    storage_size = db.Column(db.BigInteger, nullable=False, default=0)
    max_storage_size = db.Column(db.BigInteger, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    resources = db.relationship('Resource', back_populates='project', lazy='dynamic')

    def __repr__(self):
        return f"Project('{self.name}', {self.storage_size}/{self.max_storage_size})"

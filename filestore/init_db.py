"""
Database initialization.

Creates the schema and enables SQLite WAL mode for better concurrency.
"""

from sqlalchemy import text

from filestore.database import db
from filestore import models  # noqa: F401  (registers the models with the metadata)


def initialize_database(app):
    """
    Initialize database schema.

    This function should be called within an app context.
    """
    db.create_all()

    engine = db.engine
    if engine.name == 'sqlite' and engine.url.database not in (None, '', ':memory:'):
        try:
            with engine.connect() as conn:
                conn.execute(text('PRAGMA journal_mode=WAL'))
                conn.commit()
                app.logger.info("SQLite WAL mode enabled for better concurrency")
        except Exception as e:
            app.logger.warning(f"Could not enable WAL mode: {e}")

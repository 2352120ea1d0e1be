# File storage service - project-scoped uploads with quotas and role-based access
import logging
import os
import sys

from dotenv import load_dotenv
from flask import Flask

from filestore.api.blobs import blobs_bp
from filestore.api.errors import register_error_handlers
from filestore.api.resources import resources_bp
from filestore.config import FileStorageConfig, load_file_storage_config, load_storage_settings
from filestore.database import db
from filestore.init_db import initialize_database
from filestore.services.orchestrator import FileStorageService
from filestore.services.storage import BlobStorageBackend, build_blob_store

# Room for multipart boundaries and form fields on top of the file bytes
MULTIPART_OVERHEAD = 1_000_000


def configure_logging():
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    # Clear existing handlers to avoid duplicates when the factory runs more than once
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_app(config_overrides=None, storage_config: FileStorageConfig = None,
               blob_store: BlobStorageBackend = None) -> Flask:
    """
    Build the Flask application.

    Configuration is read from the environment once here; tests pass
    overrides, a storage config and a blob store explicitly.
    """
    load_dotenv()
    configure_logging()

    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('SQLALCHEMY_DATABASE_URI', 'sqlite:///filestore.db')
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'default-dev-key-change-in-production')
    app.config['FILE_STORAGE_CREATE_BUCKET'] = True
    app.config.update(config_overrides or {})

    storage_config = storage_config or load_file_storage_config()
    if app.config.get('MAX_CONTENT_LENGTH') is None:
        app.config['MAX_CONTENT_LENGTH'] = (
            storage_config.max_file_size * storage_config.bulk_upload_max_files + MULTIPART_OVERHEAD)

    if blob_store is None:
        settings = load_storage_settings()
        app.config['FILE_STORAGE_CREATE_BUCKET'] = settings.create_bucket
        blob_store = build_blob_store(settings, app.config['SECRET_KEY'],
                                      public_base_url=os.environ.get('PUBLIC_BASE_URL'))

    db.init_app(app)
    app.extensions['filestore'] = FileStorageService(config=storage_config, blob_store=blob_store)

    register_error_handlers(app)
    app.register_blueprint(resources_bp)
    app.register_blueprint(blobs_bp)

    with app.app_context():
        initialize_database(app)

    if app.config['FILE_STORAGE_CREATE_BUCKET']:
        blob_store.ensure_bucket()

    app.logger.info(
        f"=== File storage service starting: backend={blob_store.name}, "
        f"max file size={storage_config.max_file_size} bytes ===")
    return app


if __name__ == '__main__':
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument('--debug', action='store_true', help='Run in debug mode')
    parser.add_argument('--port', type=int, default=8080)
    args = parser.parse_args()

    # For production use a WSGI server: gunicorn 'filestore.wsgi:app'
    create_app().run(host='0.0.0.0', port=args.port, debug=args.debug)

"""WSGI entry point: gunicorn 'filestore.wsgi:app'."""

from filestore.app import create_app

app = create_app()

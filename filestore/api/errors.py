"""
JSON error responses for the API.

Domain errors map to their own status and error code. Anything unexpected
is logged and reported as a generic 500 without internal detail.
"""

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from filestore.services.exceptions import GENERIC_ERROR_MESSAGE, FileStorageError, StorageBackendError

logger = logging.getLogger(__name__)


def error_response(message, code, status_code):
    return jsonify({'error': message, 'code': code}), status_code


def handle_file_storage_error(e: FileStorageError):
    if isinstance(e, StorageBackendError):
        logger.error(
            f"Storage operation failed: operation={e.operation}, project={e.project_id}, "
            f"resource={e.resource_id}, key={e.key}: {e}")
        return error_response('Storage operation failed. Please try again later.', e.error_code, e.status_code)
    if e.status_code >= 500:
        logger.error(f"Internal storage error: {e}")
        return error_response(GENERIC_ERROR_MESSAGE, e.error_code, e.status_code)
    logger.info(f"{e.error_code}: {e}")
    return error_response(str(e), e.error_code, e.status_code)


def handle_request_too_large(e: RequestEntityTooLarge):
    return error_response('File size exceeds maximum allowed size', 'FILE_TOO_LARGE', 413)


def handle_http_exception(e: HTTPException):
    return error_response(e.description, e.name.upper().replace(' ', '_'), e.code)


def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return handle_http_exception(e)
    logger.exception('Unexpected error occurred')
    return error_response(GENERIC_ERROR_MESSAGE, 'INTERNAL_SERVER_ERROR', 500)


def register_error_handlers(app):
    app.register_error_handler(FileStorageError, handle_file_storage_error)
    app.register_error_handler(RequestEntityTooLarge, handle_request_too_large)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_unexpected_error)

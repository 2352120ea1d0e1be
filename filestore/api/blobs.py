"""Serves signed links issued by the local storage backend."""

import logging
import os

from flask import Blueprint, abort, current_app, send_file
from itsdangerous import BadSignature

from filestore.services.exceptions import AccessDeniedError
from filestore.services.storage import BlobLinkExpired, LocalStorageBackend

logger = logging.getLogger(__name__)

blobs_bp = Blueprint('blobs', __name__, url_prefix='/api/v1/blobs')


@blobs_bp.route('/<token>', methods=['GET'])
def serve_blob(token):
    blob_store = current_app.extensions['filestore'].blob_store
    if not isinstance(blob_store, LocalStorageBackend):
        abort(404)

    try:
        key = blob_store.resolve_token(token)
    except BlobLinkExpired:
        raise AccessDeniedError('Download link has expired')
    except BadSignature:
        logger.warning('Rejected blob link with invalid signature')
        raise AccessDeniedError('Invalid download link')

    path = blob_store.resolve_path(key)
    if not os.path.exists(path):
        abort(404)
    return send_file(path, as_attachment=True, download_name=os.path.basename(key))

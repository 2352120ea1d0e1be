"""
Project resource endpoints: upload, bulk upload, download, presigned URL,
delete and listing.

The caller is identified by the trusted X-User-Id header set by the
upstream gateway; it is not authenticated here.
"""

import logging
from email.utils import encode_rfc2231

from flask import Blueprint, Response, current_app, jsonify, request

from filestore.services.exceptions import ValidationError
from filestore.services.orchestrator import FileStorageService, UploadedContent

logger = logging.getLogger(__name__)

USER_ID_HEADER = 'X-User-Id'
DEFAULT_PER_PAGE = 20

resources_bp = Blueprint('resources', __name__, url_prefix='/api/v1/projects/<int:project_id>/resources')


def get_file_storage_service() -> FileStorageService:
    return current_app.extensions['filestore']


def _caller_id() -> int:
    raw = request.headers.get(USER_ID_HEADER, '').strip()
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Missing or invalid {USER_ID_HEADER} header") from None


def _requested_roles():
    """allowedRoles may be repeated or comma separated."""
    roles = []
    for value in request.form.getlist('allowedRoles'):
        roles.extend(part.strip() for part in value.split(',') if part.strip())
    return roles


def content_disposition(filename: str) -> str:
    """Attachment header, RFC 2231 encoded when the name is not plain ASCII."""
    safe_name = (filename or 'download').replace('"', '')
    try:
        safe_name.encode('ascii')
        return f'attachment; filename="{safe_name}"'
    except UnicodeEncodeError:
        return f"attachment; filename*={encode_rfc2231(safe_name, charset='utf-8')}"


@resources_bp.route('', methods=['POST'])
def upload_file(project_id):
    """
    Upload one file to a project.

    Multipart form-data fields:
      - file (required)
      - allowedRoles (optional, repeated or comma separated)
    """
    user_id = _caller_id()
    file = request.files.get('file')
    if file is None:
        raise ValidationError('No file provided')

    content = UploadedContent.from_file_storage(file)
    logger.info(f"Upload request: project={project_id}, file={content.file_name}, size={content.size}")

    resource = get_file_storage_service().upload_file(content, project_id, user_id, _requested_roles())
    return jsonify(resource.to_response_dict()), 201


@resources_bp.route('/bulk', methods=['POST'])
def bulk_upload(project_id):
    user_id = _caller_id()
    files = [UploadedContent.from_file_storage(f) for f in request.files.getlist('files')]
    if not files:
        raise ValidationError('No files provided')

    logger.info(f"Bulk upload: project={project_id}, files={len(files)}")
    outcomes = get_file_storage_service().bulk_upload(files, project_id, user_id, _requested_roles())
    return jsonify([outcome.to_dict() for outcome in outcomes])


@resources_bp.route('/<int:resource_id>/download', methods=['GET'])
def download_file(project_id, resource_id):
    user_id = _caller_id()
    download = get_file_storage_service().download_file(resource_id, project_id, user_id)

    response = Response(download.iter_chunks(), mimetype=download.content_type, direct_passthrough=True)
    response.headers['Content-Disposition'] = content_disposition(download.file_name)
    if download.size:
        response.headers['Content-Length'] = str(download.size)
    response.call_on_close(download.close)
    return response


@resources_bp.route('/<int:resource_id>/url', methods=['GET'])
def get_download_url(project_id, resource_id):
    user_id = _caller_id()
    presigned = get_file_storage_service().generate_presigned_url(resource_id, project_id, user_id)
    return jsonify(presigned.to_dict())


@resources_bp.route('/<int:resource_id>', methods=['DELETE'])
def delete_file(project_id, resource_id):
    user_id = _caller_id()
    logger.info(f"Delete request: project={project_id}, resource={resource_id}, user={user_id}")
    get_file_storage_service().delete_file(resource_id, project_id, user_id)
    return '', 204


@resources_bp.route('', methods=['GET'])
def list_files(project_id):
    """
    List active resources, newest first.

    Query params:
        page: Page number (default: 1)
        per_page: Items per page (default: 20, max: 100)
    """
    user_id = _caller_id()
    page = max(request.args.get('page', 1, type=int), 1)
    per_page = max(request.args.get('per_page', DEFAULT_PER_PAGE, type=int), 1)
    result = get_file_storage_service().get_project_files(project_id, user_id, page=page, per_page=per_page)
    return jsonify(result.to_dict())

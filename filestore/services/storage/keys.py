"""Storage key generation and file name sanitization."""

import re
import time
import uuid
from typing import Optional

PROJECT_KEY_TEMPLATE = 'project-{project_id}/{timestamp}-{suffix}-{name}'

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9.-]')
_REPEATED_UNDERSCORES = re.compile(r'_{2,}')


def sanitize_file_name(file_name: Optional[str]) -> str:
    """
    Make a file name safe for object keys and filesystems.

    Every character outside [A-Za-z0-9.-] becomes '_', runs of underscores
    collapse to one, and the result is lower-cased.
    """
    safe = _UNSAFE_CHARS.sub('_', file_name or 'file')
    safe = _REPEATED_UNDERSCORES.sub('_', safe)
    return safe.lower()


def get_file_extension(file_name: Optional[str]) -> str:
    """Lower-cased extension without the dot, or '' when there is none."""
    if not file_name:
        return ''
    last_dot = file_name.rfind('.')
    if 0 < last_dot < len(file_name) - 1:
        return file_name[last_dot + 1:].lower()
    return ''


def generate_storage_key(project_id: int, file_name: Optional[str], suffix_length: int = 8,
                         *, now_millis: Optional[int] = None) -> str:
    """
    Build `project-<id>/<epoch-millis>-<random>-<sanitized-name>`.

    Collisions are not checked; millisecond time plus the random suffix
    makes them negligible.
    """
    timestamp = now_millis if now_millis is not None else int(time.time() * 1000)
    suffix = str(uuid.uuid4())[:suffix_length]
    return PROJECT_KEY_TEMPLATE.format(
        project_id=project_id,
        timestamp=timestamp,
        suffix=suffix,
        name=sanitize_file_name(file_name),
    )

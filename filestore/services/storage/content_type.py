"""
Content type detection for uploaded files.

libmagic inspects the first bytes of the stream. Catch-all answers (plain
text, octet-stream) and zip containers defer to the type mimetypes guesses
from the file name. Callers fall back to the declared type and a configured
default when nothing is detected.
"""

import logging
import mimetypes
from typing import BinaryIO, Optional

import magic

logger = logging.getLogger(__name__)

SNIFF_BYTES = 2048

mimetypes.add_type('image/webp', '.webp')
mimetypes.add_type('audio/mp4', '.m4a')
mimetypes.add_type('audio/flac', '.flac')
mimetypes.add_type('application/x-7z-compressed', '.7z')

# libmagic answers that say little more than "bytes" or "text"
_GENERIC_TYPES = frozenset({'application/octet-stream', 'text/plain', 'application/x-empty', 'inode/x-empty'})

# docx, xlsx, jar, ... all sniff as zip; the name tells them apart
_ZIP_TYPES = frozenset({'application/zip', 'application/x-zip-compressed'})


class ContentTypeSniffer:
    """Detects a MIME type from the first bytes of a stream and its file name."""

    def __init__(self, sniff_bytes: int = SNIFF_BYTES):
        self.sniff_bytes = sniff_bytes

    def _from_buffer(self, head: bytes) -> Optional[str]:
        if not head:
            return None
        try:
            return magic.from_buffer(head, mime=True)
        except magic.MagicException as e:
            logger.warning(f"libmagic could not identify content: {e}")
            return None

    def detect(self, fileobj: BinaryIO, file_name: Optional[str] = None) -> Optional[str]:
        position = fileobj.tell()
        try:
            head = fileobj.read(self.sniff_bytes) or b''
        finally:
            fileobj.seek(position)

        detected = self._from_buffer(head)
        guessed, _ = mimetypes.guess_type(file_name or '')

        if detected in _ZIP_TYPES:
            return guessed or detected
        if detected is None or detected in _GENERIC_TYPES:
            if guessed:
                return guessed
            return detected if detected == 'text/plain' else None
        return detected

"""Multipart upload spooling.

``spooled_upload(file_storage)`` validates an incoming ``werkzeug``
FileStorage, writes it to a temporary file and yields a ``SpooledUpload``.
The temporary file is removed when the block exits, on success and on
failure alike.

Usage::

    with spooled_upload(request.files.get("file")) as upload:
        stored = gateway.store(upload.stream, upload.metadata())
"""
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO

from flask import current_app
from werkzeug.utils import secure_filename

from portal.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


@dataclass
class SpooledUpload:
    path: str
    stream: BinaryIO
    filename: str
    content_type: str | None
    size: int

    def metadata(self, **extra) -> dict:
        return {"name": self.filename, "content_type": self.content_type, "size": self.size, **extra}


def _invalid(message: str):
    return ValidationError(message, errors=[{"field": "file", "message": message}])


@contextmanager
def spooled_upload(file_storage):
    if file_storage is None or not file_storage.filename:
        raise _invalid("No file uploaded")

    filename = secure_filename(file_storage.filename)
    ext = os.path.splitext(filename)[1].lower()
    allowed = current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS", ())
    if not filename or ext not in allowed:
        raise _invalid(f"Invalid file type. Allowed: {', '.join(allowed)}")

    max_bytes = current_app.config.get("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)
    fd, path = tempfile.mkstemp(prefix="upload-", suffix=ext, dir=current_app.config.get("UPLOAD_TMP_DIR"))
    try:
        size = 0
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = file_storage.stream.read(_CHUNK)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise _invalid(f"File too large. Maximum size is {max_bytes} bytes")
                out.write(chunk)
        if size == 0:
            raise _invalid("Uploaded file is empty")

        with open(path, "rb") as stream:
            yield SpooledUpload(
                path=path,
                stream=stream,
                filename=filename,
                content_type=file_storage.mimetype or None,
                size=size,
            )
    finally:
        if os.path.exists(path):
            os.remove(path)
            logger.debug("Removed temporary upload %s", path)

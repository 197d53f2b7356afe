"""
File Store: saves uploaded evidence files and deletes them later.

Files land under ``UPLOAD_FOLDER`` with a random prefix. Saving happens
before the workflow transaction opens; if that transaction fails, the
caller discards what was saved. Deleting superseded files happens after
commit and is best-effort: failures are logged per file and never raised.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from werkzeug.utils import secure_filename

from app.core.exceptions import ValidationError
from app.models import db
from app.models.file import StoredFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    """A file already written to disk but not yet recorded in the database."""

    path: str
    original_name: str
    mimetype: str
    size: int
    field_name: str


def _upload_folder() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    return folder


def _check_extension(filename: str, field_name: str) -> None:
    allowed = current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS") or set()
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if allowed and ext not in allowed:
        raise ValidationError(
            f"File type '.{ext}' is not allowed",
            details={field_name: f"allowed: {', '.join(sorted(allowed))}"},
        )


def save_uploads(files, fields: Iterable[str] | None = None) -> list[UploadedFile]:
    """Write every non-empty upload in ``files`` (a werkzeug MultiDict) to disk.

    Args:
        files: ``request.files``.
        fields: Restrict to these multipart field names; None accepts all.

    Raises:
        ValidationError: a file has a disallowed extension. Nothing is
            written in that case.
    """
    wanted = set(fields) if fields is not None else None
    pending = []
    for field_name in files:
        if wanted is not None and field_name not in wanted:
            continue
        for storage in files.getlist(field_name):
            if storage is None or not storage.filename:
                continue
            _check_extension(storage.filename, field_name)
            pending.append((field_name, storage))

    folder = _upload_folder() if pending else None
    saved = []
    try:
        for field_name, storage in pending:
            name = secure_filename(storage.filename) or "upload"
            dest = os.path.join(folder, f"{uuid.uuid4().hex}_{name}")
            storage.save(dest)
            saved.append(UploadedFile(
                path=dest,
                original_name=storage.filename,
                mimetype=storage.mimetype or "application/octet-stream",
                size=os.path.getsize(dest),
                field_name=field_name,
            ))
    except OSError:
        discard(saved)
        raise
    return saved


def register(upload: UploadedFile, *, user_email: str, module: str) -> StoredFile:
    """Record a saved upload in stored_files (flush only)."""
    stored = StoredFile(
        user_email=user_email,
        file_path=upload.path,
        original_name=upload.original_name,
        mimetype=upload.mimetype,
        size=upload.size,
        field_name=upload.field_name,
        module=module,
    )
    db.session.add(stored)
    db.session.flush()
    return stored


def delete_file(path: str) -> bool:
    """Remove a backing file. Returns False (and logs) on failure."""
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.info("File already gone: %s", path)
        return True
    except OSError as exc:
        logger.warning("Could not delete file %s: %s", path, exc)
        return False
    return True


def discard(uploads: Iterable[UploadedFile]) -> None:
    """Delete files saved for a transaction that did not commit."""
    for upload in uploads:
        delete_file(upload.path)

"""Staging of multipart uploads on local disk"""

import logging
import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from fastapi import UploadFile

from account_api.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _has_content(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


@contextmanager
def staged_file(upload: Optional[UploadFile], temp_dir: str) -> Iterator[Optional[str]]:
    """
    Copy an uploaded file into ``temp_dir`` and yield its path

    Yields None when no file was sent. Whatever is left of the staged file
    is removed on exit; the media service normally deletes it first.
    """
    if not _has_content(upload):
        yield None
        return

    Path(temp_dir).mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename).suffix
    path = os.path.join(temp_dir, f"{uuid.uuid4().hex}{suffix}")
    try:
        with open(path, "wb") as out:
            shutil.copyfileobj(upload.file, out)
    except OSError as e:
        logger.error(f"Could not stage upload {upload.filename}: {e}")
        if os.path.exists(path):
            os.remove(path)
        raise ValidationError("Uploaded file could not be read")

    try:
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)

"""Local media storage served by the app under /uploads."""
import logging
import os
from typing import Iterable, Optional
from uuid import uuid4

from fastapi import UploadFile

from config import MAX_UPLOAD_MB, UPLOAD_DIR
from errors import ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"
CHUNK_SIZE = 1024 * 1024

ALLOWED_EXTENSIONS = {
    "image": {".jpeg", ".jpg", ".png", ".gif", ".webp"},
    "video": {".mp4", ".webm", ".ogg"},
}


def ensure_upload_dir(path: str = UPLOAD_DIR) -> str:
    os.makedirs(path, exist_ok=True)
    return path


def _media_kind(file: UploadFile, kinds: Iterable[str]) -> Optional[str]:
    ext = os.path.splitext(file.filename or "")[1].lower()
    mime = (file.content_type or "").lower()
    for kind in kinds:
        if ext in ALLOWED_EXTENSIONS[kind] and mime.startswith(f"{kind}/"):
            return kind
    return None


def save_upload(file: UploadFile, kinds: Iterable[str] = ("image",), upload_dir: str = UPLOAD_DIR) -> str:
    """Store an uploaded file under a generated name and return its public URL."""
    kinds = tuple(kinds)
    if _media_kind(file, kinds) is None:
        logger.warning("Rejected upload %r (%s)", file.filename, file.content_type)
        allowed = " and ".join(f"{k} files" for k in kinds)
        raise ValidationError(f"Only {allowed} are allowed!")

    ext = os.path.splitext(file.filename)[1].lower()
    name = f"{uuid4().hex}{ext}"
    target = os.path.join(upload_dir, name)
    limit = MAX_UPLOAD_MB * 1024 * 1024
    written = 0
    with open(target, "wb") as out:
        while True:
            chunk = file.file.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                break
            out.write(chunk)
    if written > limit:
        os.remove(target)
        raise ValidationError(f"File size too large. Maximum size is {MAX_UPLOAD_MB}MB.")
    return URL_PREFIX + name


def remove_upload(url: Optional[str], upload_dir: str = UPLOAD_DIR):
    if not url or not url.startswith(URL_PREFIX):
        return
    path = os.path.join(upload_dir, os.path.basename(url))
    if os.path.isfile(path):
        os.remove(path)


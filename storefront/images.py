"""Product image storage: validate an upload, write it, hand back its filename."""
import os
import re
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from .config import Settings
from .errors import InvalidInput

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|gif|webp")
UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def has_upload(upload: Optional[UploadFile]) -> bool:
    # browsers send an empty part when the file input is left blank
    return upload is not None and bool(upload.filename)


async def save_image(upload: UploadFile, settings: Settings) -> str:
    filename = os.path.basename(upload.filename or "")
    extension = os.path.splitext(filename)[1].lower()
    if extension not in ALLOWED_EXTENSIONS or not ALLOWED_TYPES.search(upload.content_type or ""):
        raise InvalidInput("only images are allowed (jpeg, jpg, png, gif, webp)")

    data = await upload.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise InvalidInput(f"image must not exceed {limit_mb:g} MB")

    stored_name = f"{int(time.time() * 1000)}-{UNSAFE_CHARS.sub('_', filename)}"
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    (upload_dir / stored_name).write_bytes(data)
    return stored_name


def discard_image(name: str, settings: Settings) -> None:
    """Remove a stored upload whose product write did not go through."""
    (Path(settings.upload_dir) / name).unlink(missing_ok=True)

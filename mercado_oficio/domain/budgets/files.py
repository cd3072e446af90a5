"""Attachment validation for budget requests (problem photos and videos)"""

import logging
from typing import Optional

from ...config import MAX_ATTACHMENT_SIZE_MB
from ...errors import ValidationError
from ...models_budget import FileKind

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_SIZE_BYTES = MAX_ATTACHMENT_SIZE_MB * 1024 * 1024

# Allowed image types for attachments
ALLOWED_IMAGE_TYPES = [
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
]

ALLOWED_VIDEO_MIME_TYPES = [
    "video/mp4",
    "video/quicktime",  # .mov
    "video/webm",
    "video/x-msvideo",  # .avi
]

# Characters that must never reach a stored filename
DANGEROUS_FILENAME_CHARS = ["..", "/", "\\", "<", ">", ":", '"', "|", "?", "*"]


def classify_mime_type(mime_type: Optional[str]) -> FileKind:
    """
    Map a MIME type to its attachment kind.

    Raises:
        ValidationError: If the type is neither an allowed image nor video
    """
    normalized = (mime_type or "").split(";")[0].strip().lower()
    if normalized in ALLOWED_IMAGE_TYPES:
        return FileKind.IMAGEN
    if normalized in ALLOWED_VIDEO_MIME_TYPES:
        return FileKind.VIDEO
    raise ValidationError(
        f"Invalid file type {mime_type!r}. Only images (JPG, PNG, WebP, GIF, HEIC) and videos (MP4, MOV, WebM, AVI) are allowed."
    )


def validate_size(size_bytes: int, max_bytes: int = MAX_ATTACHMENT_SIZE_BYTES) -> None:
    if size_bytes <= 0:
        raise ValidationError("File is empty")
    if size_bytes > max_bytes:
        raise ValidationError(
            f"File size exceeds {max_bytes / (1024 * 1024):.0f}MB limit. "
            f"Your file is {size_bytes / (1024 * 1024):.2f}MB."
        )


def sanitize_filename(filename: Optional[str], default: str = "archivo") -> str:
    """Replace path separators and dangerous characters; keeps at most 255 characters"""
    if not filename:
        return default

    cleaned = filename.strip()
    for char in DANGEROUS_FILENAME_CHARS:
        if char in cleaned:
            logger.warning(f"⚠️ Dangerous character '{char}' replaced in filename: '{filename}'")
            cleaned = cleaned.replace(char, "_")
    cleaned = cleaned.replace(" ", "_")
    return cleaned[-255:] or default

"""Image uploads for rich-text editors.

Validates an image and stores it in a public Supabase Storage bucket,
returning the URL to embed in section content. Nothing here inspects the
content beyond its declared type and size.
"""

from __future__ import annotations

import logging
import uuid

from shared import supabase_client

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
}

MAX_IMAGE_BYTES = 5 * 1024 * 1024


class ImageUploadError(ValueError):
    """The image was rejected before upload."""


def validate_image(data: bytes, content_type: str, max_bytes: int = MAX_IMAGE_BYTES) -> None:
    """Raise ImageUploadError if the image type or size is not accepted."""
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ImageUploadError("Invalid file type. Please upload JPG, PNG, or GIF images.")
    if not data:
        raise ImageUploadError("Image is empty.")
    if len(data) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ImageUploadError(f"Image is too large. Maximum size is {limit_mb}MB.")


def upload_image(
    data: bytes,
    content_type: str,
    bucket: str = "template-images",
    max_bytes: int = MAX_IMAGE_BYTES,
) -> str:
    """Upload an image and return its public URL.

    Filenames are random so uploads never collide.
    """
    validate_image(data, content_type, max_bytes)
    path = f"public/{uuid.uuid4()}.{ALLOWED_IMAGE_TYPES[content_type]}"
    supabase_client.upload_object(bucket, path, data, content_type)
    logger.info("Uploaded image %s/%s (%d bytes)", bucket, path, len(data))
    return supabase_client.public_url(bucket, path)

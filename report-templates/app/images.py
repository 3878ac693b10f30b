"""Image uploads for section content, using the tool's bucket and size limit."""

from __future__ import annotations

import sys
from pathlib import Path

from app.config import get_settings

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.storage_client import upload_image


def upload_section_image(data: bytes, content_type: str) -> str:
    """Upload an image for a section and return its public URL.

    Raises ImageUploadError for a bad type or size and SupabaseError when
    the store is unreachable.
    """
    s = get_settings()
    return upload_image(data, content_type, bucket=s.image_bucket, max_bytes=s.max_image_bytes)

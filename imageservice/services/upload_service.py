"""Upload and replace: normalize incoming bytes to the canonical format and store."""

import asyncio
import logging

from imageservice.config import settings
from imageservice.errors import InvalidInput, NotFound
from imageservice.services import image_codec, image_store

logger = logging.getLogger(__name__)


def image_url(image_id: int) -> str:
    """Canonical retrieval path for an image record."""
    return f"/images/{image_id}/raw"


def _check_payload(data: bytes | None) -> None:
    if not data:
        raise InvalidInput("No file uploaded")
    if len(data) > settings.max_upload_size_bytes:
        raise InvalidInput(
            f"File exceeds max size of {settings.max_upload_size_mb}MB"
        )


async def ingest_image(data: bytes, original_name: str | None = None) -> dict:
    """Store a newly uploaded image as an original (no parent)."""
    _check_payload(data)
    canonical = await asyncio.to_thread(image_codec.reencode, data)

    new_id = await image_store.insert_image(
        settings.canonical_content_type, original_name, canonical, parent_id=None
    )
    logger.info(
        "ingest_image: SAVED %s as %d (%d -> %d bytes)",
        original_name,
        new_id,
        len(data),
        len(canonical),
    )
    return {"id": new_id, "url": image_url(new_id)}


async def replace_image(image_id: int, data: bytes, original_name: str | None = None) -> dict:
    """Overwrite an existing record's bytes and metadata, keeping id and parent.

    A missing id is reported by the update itself, after the canonical
    re-encode; nothing is written in that case.
    """
    _check_payload(data)
    canonical = await asyncio.to_thread(image_codec.reencode, data)

    if not await image_store.update_image(
        image_id, settings.canonical_content_type, canonical, original_name
    ):
        raise NotFound("Image not found")
    logger.info("replace_image: %d replaced (%d bytes)", image_id, len(canonical))
    return {"id": image_id, "url": image_url(image_id), "updated": True}

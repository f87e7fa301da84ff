"""Annotation pipeline: source record -> overlay -> composite -> new record."""

import asyncio
import logging

from imageservice.config import settings
from imageservice.errors import CompositorFailure, ImageServiceError, NotFound
from imageservice.models.annotation import AnnotationRequest
from imageservice.services import image_codec, image_store
from imageservice.services.overlay_renderer import render_overlay, resolve_canvas
from imageservice.services.upload_service import image_url

logger = logging.getLogger(__name__)


async def annotate(source_id: int, request: AnnotationRequest) -> dict:
    """Create an annotated copy of an image and return its id and url.

    The new record links back to ``source_id``; the source is never modified.
    Nothing is stored unless compositing succeeds, so a failure leaves the
    store as it was.
    """
    source = await image_store.get_image(source_id)
    if source is None:
        raise NotFound("Image not found")

    try:
        dims = await asyncio.to_thread(image_codec.decode_metadata, source["data"])
        if dims is None:
            logger.warning(
                "annotate: no dimensions for image %d, using %dx%d canvas",
                source_id,
                settings.fallback_canvas_width,
                settings.fallback_canvas_height,
            )
        width, height = resolve_canvas(dims)

        overlay = render_overlay(width, height, request.strokes, request.texts)
        annotated = await asyncio.to_thread(
            image_codec.composite, source["data"], overlay.encode("utf-8")
        )
    except ImageServiceError:
        raise
    except Exception as e:
        raise CompositorFailure("Failed to annotate image", error=str(e)) from e

    new_id = await image_store.insert_image(
        settings.canonical_content_type,
        source["original_name"],
        annotated,
        parent_id=source_id,
    )
    logger.info(
        "annotate: image %d -> %d (%dx%d, %d strokes, %d texts)",
        source_id,
        new_id,
        width,
        height,
        len(request.strokes),
        len(request.texts),
    )
    return {"id": new_id, "url": image_url(new_id), "originalImageId": source_id}

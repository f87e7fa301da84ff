"""Image routes: upload, raw retrieval, replace and annotate."""

from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi.responses import Response

from imageservice.auth import require_role
from imageservice.config import settings
from imageservice.errors import InvalidInput, NotFound
from imageservice.models.annotation import AnnotationRequest
from imageservice.models.image import AnnotatedImage, ImageCreated, ImageUpdated
from imageservice.services import annotation_service, image_store, upload_service

router = APIRouter(
    prefix="/images",
    tags=["images"],
    dependencies=[Depends(require_role(settings.required_role_list))],
)

# Largest value a signed 64-bit SQLite INTEGER can hold
MAX_IMAGE_ID = 2**63 - 1


def parse_image_id(raw: str) -> int:
    """Path ids must be positive integers that fit an SQLite INTEGER."""
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()) or len(raw) > len(str(MAX_IMAGE_ID)):
        raise InvalidInput("Invalid image id")
    image_id = int(raw)
    if not 0 < image_id <= MAX_IMAGE_ID:
        raise InvalidInput("Invalid image id")
    return image_id


async def _read_upload(image: UploadFile | None) -> tuple[bytes, str | None]:
    if image is None:
        raise InvalidInput("No file uploaded")
    if image.size and image.size > settings.max_upload_size_bytes:
        raise InvalidInput(
            f"File {image.filename} exceeds max size of {settings.max_upload_size_mb}MB"
        )
    content = await image.read()
    return content, image.filename or None


@router.post("", status_code=201, response_model=ImageCreated)
async def upload_image(image: UploadFile | None = File(default=None)):
    """Upload an image; it is stored re-encoded in the canonical format."""
    content, filename = await _read_upload(image)
    return await upload_service.ingest_image(content, filename)


@router.get("/{image_id}/raw")
async def get_raw_image(image_id: str):
    """Serve the stored image bytes."""
    record = await image_store.get_image(parse_image_id(image_id))
    if record is None:
        raise NotFound("Image not found")
    return Response(content=record["data"], media_type=record["content_type"])


@router.put("/{image_id}", response_model=ImageUpdated)
async def replace_image(image_id: str, image: UploadFile | None = File(default=None)):
    """Replace an image's bytes in place. Id and parent link are kept."""
    target_id = parse_image_id(image_id)
    # A missing record outranks a missing file
    if not await image_store.image_exists(target_id):
        raise NotFound("Image not found")
    content, filename = await _read_upload(image)
    return await upload_service.replace_image(target_id, content, filename)


@router.post("/{image_id}/annotate", status_code=201, response_model=AnnotatedImage)
async def annotate_image(image_id: str, data: AnnotationRequest | None = Body(default=None)):
    """Draw strokes and text labels onto a copy of the image."""
    source_id = parse_image_id(image_id)
    return await annotation_service.annotate(source_id, data or AnnotationRequest())

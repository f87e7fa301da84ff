"""Image record store: keyed blob storage with metadata and parent link."""

import logging

import aiosqlite

from imageservice.database import connection
from imageservice.errors import StorageFailure

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "content_type",
    "original_name",
    "data",
    "original_image_id",
    "created_at",
    "updated_at",
)
_COLUMN_LIST = ", ".join(_COLUMNS)


async def get_image(image_id: int) -> dict | None:
    """Get a single image record, bytes included."""
    try:
        async with connection() as db:
            cursor = await db.execute(
                f"SELECT {_COLUMN_LIST} FROM images WHERE id = ?",
                (image_id,),
            )
            row = await cursor.fetchone()
    except aiosqlite.Error as e:
        raise StorageFailure("Failed to read image", error=str(e)) from e
    if row is None:
        return None
    record = dict(zip(_COLUMNS, row))
    record["data"] = bytes(record["data"])
    return record


async def image_exists(image_id: int) -> bool:
    try:
        async with connection() as db:
            cursor = await db.execute("SELECT 1 FROM images WHERE id = ?", (image_id,))
            return await cursor.fetchone() is not None
    except aiosqlite.Error as e:
        raise StorageFailure("Failed to read image", error=str(e)) from e


async def insert_image(
    content_type: str,
    original_name: str | None,
    data: bytes,
    parent_id: int | None = None,
) -> int:
    """Create a record and return its new id."""
    try:
        async with connection() as db:
            cursor = await db.execute(
                """INSERT INTO images (content_type, original_name, data, original_image_id)
                   VALUES (?, ?, ?, ?)""",
                (content_type, original_name, data, parent_id),
            )
            new_id = cursor.lastrowid
            await db.commit()
    except aiosqlite.Error as e:
        raise StorageFailure("Failed to store image", error=str(e)) from e

    logger.info(
        "insert_image: id=%d parent=%s (%d bytes)", new_id, parent_id, len(data)
    )
    return new_id


async def update_image(
    image_id: int,
    content_type: str,
    data: bytes,
    original_name: str | None,
) -> bool:
    """Replace bytes and metadata in place. The parent link is left untouched.

    Returns False if no record has this id. Concurrent updates of the same
    id are last-write-wins.
    """
    try:
        async with connection() as db:
            cursor = await db.execute(
                """UPDATE images
                   SET content_type = ?, data = ?, original_name = ?,
                       updated_at = datetime('now')
                   WHERE id = ?""",
                (content_type, data, original_name, image_id),
            )
            await db.commit()
    except aiosqlite.Error as e:
        raise StorageFailure("Failed to update image", error=str(e)) from e

    updated = cursor.rowcount > 0
    if updated:
        logger.info("update_image: id=%d (%d bytes)", image_id, len(data))
    return updated

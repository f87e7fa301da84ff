"""Initial database schema: the images table."""

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    """Create the initial database schema."""

    # AUTOINCREMENT keeps ids from ever being reused
    await db.execute("""
        CREATE TABLE images (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            content_type        TEXT NOT NULL,
            original_name       TEXT,
            data                BLOB NOT NULL,
            original_image_id   INTEGER,
            created_at          TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at          TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)
    await db.execute(
        "CREATE INDEX idx_images_original_image_id ON images(original_image_id)"
    )

"""Tests for core services: config, connection pool, record store, upload/replace."""

import asyncio
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

# Environment overrides are set in conftest.py (runs before this module).


# ── Config Tests ─────────────────────────────────────────────────────────────


class TestConfig:
    def test_settings_loaded(self):
        from imageservice.config import settings
        assert settings.disable_auth is True
        assert settings.db_pool_size == 3

    def test_canonical_content_type(self):
        from imageservice.config import settings
        assert settings.canonical_format == "png"
        assert settings.canonical_content_type == "image/png"

    def test_keycloak_urls(self):
        from imageservice.config import Settings
        s = Settings(keycloak_url="http://kc:8080/", keycloak_realm="demo", extra_issuers="")
        assert s.issuer_list == ["http://kc:8080/realms/demo"]
        assert s.jwks_uri == "http://kc:8080/realms/demo/protocol/openid-connect/certs"

    def test_csv_lists(self):
        from imageservice.config import Settings
        s = Settings(required_roles="doctor, staff,", cors_origins="")
        assert s.required_role_list == ["doctor", "staff"]
        assert s.cors_origin_list == []

    def test_data_paths(self):
        from imageservice.config import settings
        assert isinstance(settings.data_dir, Path)
        assert isinstance(settings.db_path, Path)


# ── Database Tests ───────────────────────────────────────────────────────────


class TestDatabase:
    @pytest.mark.asyncio
    async def test_tables_exist(self, db):
        from imageservice.database import connection
        async with connection() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            )
            names = [r[0] for r in await cursor.fetchall()]
        assert "images" in names
        assert "_migrations" in names

    @pytest.mark.asyncio
    async def test_migrations_recorded_and_not_reapplied(self, db):
        from imageservice.database import connection
        from imageservice.migrations.runner import pending_migrations, run_migrations
        async with connection() as conn:
            assert await pending_migrations(conn) == []
            assert await run_migrations(conn) == []
            cursor = await conn.execute("SELECT name FROM _migrations")
            names = [r[0] for r in await cursor.fetchall()]
        assert names == ["imageservice.migrations.m001_initial"]

    @pytest.mark.asyncio
    async def test_wal_mode(self, db):
        from imageservice.database import connection
        async with connection() as conn:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
        assert row[0] == "wal"

    @pytest.mark.asyncio
    async def test_pool_bounded_and_released(self, db):
        from imageservice.database import connection, get_pool
        pool = get_pool()
        assert pool.size == 3
        async with connection():
            async with connection():
                assert pool.available == 1
        assert pool.available == 3

    @pytest.mark.asyncio
    async def test_connection_released_on_error(self, db):
        from imageservice.database import connection, get_pool
        with pytest.raises(ZeroDivisionError):
            async with connection():
                1 / 0
        assert get_pool().available == 3

    @pytest.mark.asyncio
    async def test_exhausted_pool_waits(self, db):
        from imageservice.database import connection, get_pool
        pool = get_pool()
        held = [pool.acquire() for _ in range(pool.size)]
        for cm in held:
            await cm.__aenter__()

        async def borrow():
            async with connection():
                return True

        waiter = asyncio.create_task(borrow())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await held[0].__aexit__(None, None, None)
        assert await asyncio.wait_for(waiter, timeout=2)
        for cm in held[1:]:
            await cm.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_ping(self, db):
        from imageservice.database import ping
        assert await ping() is True

    @pytest.mark.asyncio
    async def test_ping_without_pool(self):
        import imageservice.database as db_mod
        if db_mod._pool is not None:
            await db_mod.close_db()
        assert await db_mod.ping() is False


# ── Image Store Tests ────────────────────────────────────────────────────────


class TestImageStore:
    @pytest.mark.asyncio
    async def test_insert_and_get(self, db):
        from imageservice.services.image_store import get_image, insert_image
        new_id = await insert_image("image/png", "a.png", b"\x89PNG...", parent_id=None)
        record = await get_image(new_id)
        assert record["id"] == new_id
        assert record["content_type"] == "image/png"
        assert record["original_name"] == "a.png"
        assert record["data"] == b"\x89PNG..."
        assert record["original_image_id"] is None

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, db):
        from imageservice.services.image_store import get_image, image_exists
        assert await get_image(99999) is None
        assert await image_exists(99999) is False

    @pytest.mark.asyncio
    async def test_update_keeps_parent(self, db):
        from imageservice.services.image_store import get_image, insert_image, update_image
        parent = await insert_image("image/png", None, b"one")
        child = await insert_image("image/png", "c.png", b"two", parent_id=parent)
        assert await update_image(child, "image/png", b"three", "renamed.png") is True
        record = await get_image(child)
        assert record["data"] == b"three"
        assert record["original_name"] == "renamed.png"
        assert record["original_image_id"] == parent

    @pytest.mark.asyncio
    async def test_update_missing(self, db):
        from imageservice.services.image_store import update_image
        assert await update_image(424242, "image/png", b"x", None) is False

    @pytest.mark.asyncio
    async def test_ids_not_reused(self, db):
        from imageservice.database import connection
        from imageservice.services.image_store import insert_image
        first = await insert_image("image/png", None, b"x")
        async with connection() as conn:
            await conn.execute("DELETE FROM images WHERE id = ?", (first,))
            await conn.commit()
        second = await insert_image("image/png", None, b"y")
        assert second > first


# ── Upload / Replace Tests ───────────────────────────────────────────────────


class TestUploadService:
    @pytest.mark.asyncio
    async def test_ingest_normalizes_to_png(self, db, jpeg_bytes):
        from imageservice.services.image_store import get_image
        from imageservice.services.upload_service import ingest_image
        result = await ingest_image(jpeg_bytes, "photo.jpg")
        assert result["url"] == f"/images/{result['id']}/raw"

        record = await get_image(result["id"])
        assert record["content_type"] == "image/png"
        assert record["original_image_id"] is None
        assert Image.open(BytesIO(record["data"])).format == "PNG"

    @pytest.mark.asyncio
    async def test_ingest_rejects_empty(self, db):
        from imageservice.errors import InvalidInput
        from imageservice.services.upload_service import ingest_image
        with pytest.raises(InvalidInput):
            await ingest_image(b"", "empty.png")

    @pytest.mark.asyncio
    async def test_ingest_rejects_corrupt(self, db):
        from imageservice.errors import InvalidInput
        from imageservice.services.upload_service import ingest_image
        with pytest.raises(InvalidInput):
            await ingest_image(b"definitely not an image", "bad.png")

    @pytest.mark.asyncio
    async def test_replace_twice_is_idempotent(self, db, png_bytes, image_factory):
        from imageservice.services.image_store import get_image
        from imageservice.services.upload_service import ingest_image, replace_image
        created = await ingest_image(png_bytes, "orig.png")
        new_bytes = image_factory(size=(30, 30), color=(1, 2, 3))

        first = await replace_image(created["id"], new_bytes, "new.png")
        stored_first = (await get_image(created["id"]))["data"]
        second = await replace_image(created["id"], new_bytes, "new.png")
        stored_second = await get_image(created["id"])

        assert first["id"] == second["id"] == created["id"]
        assert first["updated"] is True
        assert stored_first == stored_second["data"]
        assert stored_second["original_image_id"] is None

    @pytest.mark.asyncio
    async def test_replace_missing(self, db, png_bytes):
        from imageservice.errors import NotFound
        from imageservice.services.upload_service import replace_image
        with pytest.raises(NotFound):
            await replace_image(31337, png_bytes, "x.png")

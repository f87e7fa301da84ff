"""Shared test fixtures for all test modules."""

import os
import tempfile
from io import BytesIO

import pytest

# ── Environment overrides (must be set before importing imageservice) ───────
_tmp = tempfile.mkdtemp(prefix="imgsvc_pytest_")
os.environ["IMAGESERVICE_DATA_DIR"] = _tmp
os.environ["IMAGESERVICE_DB_PATH"] = os.path.join(_tmp, "test.db")
os.environ["IMAGESERVICE_DB_POOL_SIZE"] = "3"
os.environ["IMAGESERVICE_DISABLE_AUTH"] = "true"
os.environ["IMAGESERVICE_REQUIRED_ROLES"] = ""


def make_image_bytes(size=(100, 100), color=(40, 90, 160), fmt="PNG", mode="RGB") -> bytes:
    """Encode a solid-color image in memory."""
    from PIL import Image

    img = Image.new(mode, size, color=color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(size=(64, 48), fmt="JPEG")


@pytest.fixture
async def db(tmp_path):
    """A fresh database file and connection pool for each test."""
    import imageservice.database as db_mod
    from imageservice.config import settings

    original_db_path = settings.db_path
    settings.db_path = tmp_path / "images_test.db"

    if db_mod._pool is not None:
        await db_mod.close_db()

    await db_mod.init_db()
    yield
    await db_mod.close_db()
    settings.db_path = original_db_path


@pytest.fixture
async def client(db):
    """HTTP client talking to the ASGI app in-process."""
    import httpx

    from imageservice.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def image_factory():
    """Return the in-memory image encoder for custom sizes and formats."""
    return make_image_bytes

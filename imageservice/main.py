"""Image storage and annotation FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Configure logging so our INFO messages appear in container logs
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# Keep noisy libraries at WARNING
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imageservice.config import settings
from imageservice.database import close_db, init_db, ping
from imageservice.errors import install_error_handlers
from imageservice.routers import images

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    await init_db()

    if settings.disable_auth:
        logger.warning(
            "Authentication is DISABLED (IMAGESERVICE_DISABLE_AUTH=true). "
            "All endpoints are publicly accessible."
        )
    else:
        logger.info("Validating tokens against %s", settings.jwks_uri)

    yield
    await close_db()


app = FastAPI(
    title="Image Service",
    description="Image storage and annotation service",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: any origin unless IMAGESERVICE_CORS_ORIGINS lists specific ones
_cors_origins = settings.cors_origin_list or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials="*" not in _cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

app.include_router(images.router)


@app.get("/")
async def root():
    return {"message": "Image service is running"}


# Health check (public, no auth)
@app.get("/health")
async def health():
    if await ping():
        return {"status": "ok", "db": "ok"}
    return JSONResponse(status_code=503, content={"status": "error", "db": "unreachable"})

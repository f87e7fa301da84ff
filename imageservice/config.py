"""Application configuration via environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Image service settings loaded from environment variables."""

    # Data paths
    data_dir: Path = Path("/data")
    db_path: Path = Path("/data/images.db")

    # Storage pool
    db_pool_size: int = 10
    db_busy_timeout_ms: int = 5000

    # Authentication (Keycloak)
    disable_auth: bool = False
    keycloak_url: str = "http://keycloak:8080"
    keycloak_realm: str = "patient-journal"
    # Comma-separated issuers accepted in addition to the realm URL
    extra_issuers: str = "http://localhost:8080/realms/patient-journal"
    jwks_cache_seconds: int = 300
    # Cap on JWKS downloads triggered by unknown key ids
    jwks_requests_per_minute: int = 5
    # Comma-separated; empty means any authenticated caller
    required_roles: str = ""

    # CORS (comma-separated extra origins)
    cors_origins: str = ""

    # Image processing
    max_upload_size_mb: int = 20
    canonical_format: str = "png"
    fallback_canvas_width: int = 1024
    fallback_canvas_height: int = 768
    font_path: str = ""

    model_config = {
        "env_prefix": "IMAGESERVICE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def canonical_content_type(self) -> str:
        fmt = self.canonical_format.lower()
        return f"image/{'jpeg' if fmt == 'jpg' else fmt}"

    @property
    def realm_issuer(self) -> str:
        return f"{self.keycloak_url.rstrip('/')}/realms/{self.keycloak_realm}"

    @property
    def issuer_list(self) -> list[str]:
        issuers = [self.realm_issuer]
        issuers.extend(i for i in _split_csv(self.extra_issuers) if i not in issuers)
        return issuers

    @property
    def jwks_uri(self) -> str:
        return f"{self.realm_issuer}/protocol/openid-connect/certs"

    @property
    def required_role_list(self) -> list[str]:
        return _split_csv(self.required_roles)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)


# Singleton instance
settings = Settings()

"""Authentication: Keycloak bearer tokens validated against the realm JWKS."""

import logging
import time
from collections import deque

import httpx
from fastapi import Depends, Request
from jose import JWTError, jwt

from imageservice.config import settings
from imageservice.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256"]
ANONYMOUS_PRINCIPAL = {"sub": "anonymous", "roles": []}

# Cached key set: {"keys": [...], "fetched_at": monotonic seconds}
_jwks_cache: dict = {}
# Monotonic times of JWKS downloads within the last minute
_fetch_times: deque[float] = deque()


async def fetch_jwks() -> dict:
    """Download the realm's signing keys."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(settings.jwks_uri)
        response.raise_for_status()
        return response.json()


def _refresh_allowed(now: float) -> bool:
    while _fetch_times and now - _fetch_times[0] >= 60:
        _fetch_times.popleft()
    return len(_fetch_times) < settings.jwks_requests_per_minute


async def get_jwks(force_refresh: bool = False) -> dict:
    """Return the signing keys, refetching once the cache has expired.

    Forced refreshes are limited to ``jwks_requests_per_minute`` downloads;
    past that the cached keys are returned as they are.
    """
    now = time.monotonic()
    fresh = now - _jwks_cache.get("fetched_at", float("-inf")) < settings.jwks_cache_seconds
    if "keys" in _jwks_cache:
        if not force_refresh and fresh:
            return {"keys": _jwks_cache["keys"]}
        if force_refresh and fresh and not _refresh_allowed(now):
            logger.debug("JWKS refresh skipped, rate limit reached")
            return {"keys": _jwks_cache["keys"]}

    try:
        jwks = await fetch_jwks()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Could not fetch JWKS from %s: %s", settings.jwks_uri, e)
        raise Unauthorized("Invalid or missing token", error="Signing keys unavailable") from e

    _fetch_times.append(now)
    _jwks_cache["keys"] = jwks.get("keys", [])
    _jwks_cache["fetched_at"] = now
    return {"keys": _jwks_cache["keys"]}


def clear_jwks_cache() -> None:
    _jwks_cache.clear()
    _fetch_times.clear()


async def decode_token(token: str) -> dict:
    """Decode and validate a bearer token. Raises JWTError on failure.

    Keys are refetched only for a ``kid`` the cached set doesn't know, which
    is how a realm key rotation shows up.
    """
    kid = jwt.get_unverified_header(token).get("kid")
    jwks = await get_jwks()
    if kid and kid not in {key.get("kid") for key in jwks["keys"]}:
        logger.info("Unknown signing key %s, refreshing JWKS", kid)
        jwks = await get_jwks(force_refresh=True)
    return jwt.decode(
        token,
        jwks,
        algorithms=ALGORITHMS,
        issuer=settings.issuer_list,
        options={"verify_aud": False},
    )


def roles_of(payload: dict) -> list[str]:
    """Roles from the mapped ``roles`` claim, else Keycloak's realm roles."""
    roles = payload.get("roles")
    if roles is None:
        roles = (payload.get("realm_access") or {}).get("roles", [])
    if isinstance(roles, str):
        roles = [roles]
    return list(roles)


async def require_auth(request: Request) -> dict:
    """FastAPI dependency that enforces a valid bearer token.

    Returns the decoded token payload. When IMAGESERVICE_DISABLE_AUTH=true
    every request is let through with an anonymous principal.
    """
    if settings.disable_auth:
        return dict(ANONYMOUS_PRINCIPAL)

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise Unauthorized("Invalid or missing token", error="No authorization token was found")

    token = auth_header.split(" ", 1)[1].strip()
    try:
        return await decode_token(token)
    except JWTError as e:
        logger.warning("Rejected token: %s", e)
        raise Unauthorized("Invalid or missing token", error=str(e)) from e


def require_role(roles: str | list[str]):
    """Dependency factory: the caller must hold at least one of ``roles``.

    An empty role list only requires authentication.
    """
    role_list = [roles] if isinstance(roles, str) else list(roles)

    async def check_role(principal: dict = Depends(require_auth)) -> dict:
        if settings.disable_auth or not role_list:
            return principal
        actual = roles_of(principal)
        if not any(role in actual for role in role_list):
            raise Forbidden(
                "Forbidden: insufficient permissions",
                required=role_list,
                actual=actual,
            )
        return principal

    return check_role

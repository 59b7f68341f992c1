"""
Authentication helpers shared by the API and the services.

Token expiry checks, auth cookie names and page route gating.
"""

import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from shared.constants import COOKIE_MAX_AGE, REFRESH_THRESHOLD


@dataclass(frozen=True)
class AuthConfig:
    max_age: int = COOKIE_MAX_AGE
    refresh_threshold: int = REFRESH_THRESHOLD
    secure: bool = False
    same_site: str = "Lax"


DEFAULT_AUTH_CONFIG = AuthConfig()

AUTH_COOKIES = {
    "SESSION": "sb-session",
    "REFRESH_TOKEN": "sb-refresh-token",
    "ACCESS_TOKEN": "sb-access-token",
}

PUBLIC_ROUTES = (
    "/auth/login",
    "/auth/register",
    "/auth/reset-password",
    "/auth/confirm",
)

PROTECTED_ROUTES = (
    "/platform",
    "/profile",
    "/settings",
)

HOME_ROUTE = "/"
LOGIN_ROUTE = "/auth/login"
PLATFORM_ROUTE = "/platform"


def _now(now: Optional[float]) -> int:
    return int(time.time() if now is None else now)


def is_token_expiring(expires_at: Optional[int],
                      threshold: int = DEFAULT_AUTH_CONFIG.refresh_threshold,
                      now: Optional[float] = None) -> bool:
    """True when the token expires within `threshold` seconds (or has no expiry)."""
    if not expires_at:
        return True
    return expires_at - _now(now) < threshold


def get_time_until_expiration(expires_at: Optional[int], now: Optional[float] = None) -> int:
    if not expires_at:
        return 0
    return max(0, expires_at - _now(now))


def format_expiration_time(expires_at: Optional[int], now: Optional[float] = None) -> str:
    """Human readable time left, for logs: 'expirado', '45s', '12m', '3h'."""
    time_left = get_time_until_expiration(expires_at, now)

    if time_left == 0:
        return "expirado"
    if time_left < 60:
        return f"{time_left}s"
    if time_left < 3600:
        return f"{time_left // 60}m"
    return f"{time_left // 3600}h"


def is_public_route(pathname: str) -> bool:
    return any(pathname.startswith(route) for route in PUBLIC_ROUTES)


def is_protected_route(pathname: str) -> bool:
    return any(pathname.startswith(route) for route in PROTECTED_ROUTES)


def is_gated_path(pathname: str) -> bool:
    """Paths that go through route gating: '/', '/platform*' and '/auth/*'."""
    return (
        pathname == HOME_ROUTE
        or pathname.startswith(PLATFORM_ROUTE)
        or pathname.startswith("/auth/")
    )


def resolve_route_redirect(pathname: str, authenticated: bool) -> Optional[str]:
    """
    Decide where a page request should be redirected, if anywhere.

    Returns the redirect location, or None to let the request through.
    """
    if pathname == HOME_ROUTE:
        return PLATFORM_ROUTE if authenticated else None

    if authenticated and pathname in ("/auth/login", "/auth/register"):
        return PLATFORM_ROUTE

    if not authenticated and pathname.startswith(PLATFORM_ROUTE):
        return f"{LOGIN_ROUTE}?{urlencode({'redirectTo': pathname})}"

    return None

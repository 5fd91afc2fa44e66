"""Session cookie helpers."""

from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import Response

from app.config import get_settings

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "[::1]")


def _is_local_host(request: Request) -> bool:
    host = request.headers.get("host", "")
    hostname = host.rsplit(":", 1)[0] if not host.startswith("[") else host.split("]")[0] + "]"
    return hostname in _LOCAL_HOSTS or hostname.endswith(".localhost")


def resolve_secure(request: Request) -> bool:
    """Explicit setting wins; otherwise secure unless serving local development."""
    configured = get_settings().session_cookie_secure
    if configured is not None:
        return configured
    return not _is_local_host(request)


def set_session_cookie(
    response: Response, request: Request, token: str, expires_at: datetime
) -> None:
    settings = get_settings()
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        expires=expires_at,
        path="/",
        domain=settings.session_cookie_domain,
        secure=resolve_secure(request),
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.session_cookie_domain,
    )

"""
Session cookie handling.

The cookie carries only the session id; all session state lives in the
database and is resolved per request by yoink.fastapi.authz.
"""

from datetime import timedelta

from fastapi import Cookie, Response

from yoink.config import AUTH_COOKIE_NAME, SESSION_LIFETIME

AUTH_COOKIE = Cookie(None, alias=AUTH_COOKIE_NAME)


def set_session_cookie(
    response: Response, session_id: str, lifetime: timedelta = SESSION_LIFETIME
) -> None:
    """Set the session id as an HTTP-only cookie."""
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=session_id,
        max_age=int(lifetime.total_seconds()),
        httponly=True,
        secure=True,
        path="/",
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    # FastAPI's delete_cookie does not set the secure attribute
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value="",
        max_age=0,
        expires=0,
        httponly=True,
        secure=True,
        path="/",
        samesite="lax",
    )

import logging

from fastapi import HTTPException, Request

from yoink import globals
from yoink.authsession import SessionService
from yoink.db.structs import AuthContext
from yoink.errors import SessionError, TokenError
from yoink.fastapi.session import AUTH_COOKIE
from yoink.tokens import TokenService

logger = logging.getLogger(__name__)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_auth(
    sessions: SessionService,
    tokens: TokenService,
    session_id: str | None,
    authorization: str | None,
) -> AuthContext:
    """Resolve request credentials into an AuthContext.

    The session cookie is always tried first; the bearer token is only a
    fallback. Raises HTTPException 401 without revealing which check failed.
    """
    if session_id:
        try:
            return await sessions.resolve(session_id)
        except SessionError as e:
            logger.debug("Session rejected: %s", e.code)
    token = bearer_token(authorization)
    if token:
        try:
            return await tokens.validate_token(token)
        except TokenError as e:
            logger.warning("Bearer token rejected: %s", e.code)
            raise HTTPException(status_code=401, detail="Invalid token")
    if session_id:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    raise HTTPException(status_code=401, detail="Not authenticated")


async def authenticate(request: Request, auth=AUTH_COOKIE) -> AuthContext:
    """FastAPI dependency for every resource route."""
    return await resolve_auth(
        globals.sessions.instance,
        globals.tokens.instance,
        auth,
        request.headers.get("authorization"),
    )


async def authenticate_session(auth=AUTH_COOKIE) -> AuthContext:
    """Like authenticate, but only a browser session will do."""
    if not auth:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return await globals.sessions.instance.resolve(auth)
    except SessionError:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

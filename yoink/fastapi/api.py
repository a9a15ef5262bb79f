"""Authentication API: passkey ceremonies, sessions, organizations and tokens."""

import logging

import msgspec
from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from yoink import globals
from yoink.db.structs import AuthContext
from yoink.errors import TokenError
from yoink.fastapi import authz, session
from yoink.fastapi.apistructs import (
    ApiCreatedToken,
    ApiCredential,
    ApiMe,
    ApiSession,
    ApiTokenInfo,
    LoginOptions,
    LoginVerify,
    OrgSwitch,
    RegisterVerify,
    SignupOptions,
    SignupVerify,
    TokenCreate,
    session_public_id,
)
from yoink.fastapi.errors import install_error_handlers
from yoink.fastapi.response import MsgspecResponse
from yoink.fastapi.session import AUTH_COOKIE

logger = logging.getLogger(__name__)

app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

install_error_handlers(app)


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    """Ensure the auth cookie is cleared on 401 responses."""
    resp = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    if exc.status_code == 401:
        session.clear_session_cookie(resp)
    return resp


async def _login(
    user_id: str, organization_id: str | None = None, status_code: int = 200
) -> MsgspecResponse:
    """Start a session and answer with the cookie set."""
    s = await globals.sessions.instance.create_session(user_id, organization_id)
    user = await globals.db.instance.get_user(user_id)
    resp = MsgspecResponse(
        ApiMe(
            user_id=user_id,
            organization_id=s.current_organization_id,
            email=user.email if user else None,
        ),
        status_code=status_code,
    )
    session.set_session_cookie(resp, s.id, globals.settings.instance.session_lifetime)
    return resp


# -------------------------------------------------------------------------
# Signup and login ceremonies (public)
# -------------------------------------------------------------------------


@app.post("/signup/options")
async def signup_options(payload: dict = Body(...)):
    req = msgspec.convert(payload, SignupOptions)
    user_id = globals.memberships.instance.ids.generate()
    opts = globals.passkeys.instance.generate_signup_registration_options(
        req.email, user_id
    )
    return MsgspecResponse(
        {"options": opts.options, "challenge": opts.challenge, "user_id": user_id}
    )


@app.post("/signup/verify")
async def signup_verify(payload: dict = Body(...)):
    req = msgspec.convert(payload, SignupVerify)
    credential = globals.passkeys.instance.check_registration(
        req.user_id, req.challenge, req.response, req.credential_name
    )
    result = await globals.memberships.instance.signup(
        req.email, user_id=req.user_id, credential=credential
    )
    return await _login(result.user.id, result.organization.id, status_code=201)


@app.post("/login/options")
async def login_options(payload: dict | None = Body(None)):
    req = msgspec.convert(payload or {}, LoginOptions)
    opts = await globals.passkeys.instance.generate_authentication_options(req.user_id)
    return MsgspecResponse({"options": opts.options, "challenge": opts.challenge})


@app.post("/login/verify")
async def login_verify(payload: dict = Body(...)):
    req = msgspec.convert(payload, LoginVerify)
    authenticated = await globals.passkeys.instance.verify_authentication(
        req.challenge, req.response
    )
    logger.info("User %s logged in", authenticated.user_id)
    return await _login(authenticated.user_id)


@app.post("/logout")
async def logout(response: Response, auth=AUTH_COOKIE):
    if auth:
        await globals.sessions.instance.revoke_session(auth)
    session.clear_session_cookie(response)
    return {"message": "Logged out"}


# -------------------------------------------------------------------------
# Current user
# -------------------------------------------------------------------------


@app.get("/me")
async def me(ctx: AuthContext = Depends(authz.authenticate)):
    user = await globals.db.instance.get_user(ctx.user_id)
    return MsgspecResponse(
        ApiMe(
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            email=user.email if user else None,
        )
    )


@app.post("/passkeys/options")
async def register_options(ctx: AuthContext = Depends(authz.authenticate_session)):
    opts = await globals.passkeys.instance.generate_registration_options(ctx.user_id)
    return MsgspecResponse({"options": opts.options, "challenge": opts.challenge})


@app.post("/passkeys")
async def register_verify(
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate_session),
):
    req = msgspec.convert(payload, RegisterVerify)
    credential = await globals.passkeys.instance.verify_registration(
        ctx.user_id, req.challenge, req.response, req.credential_name
    )
    return MsgspecResponse(ApiCredential.from_db(credential), status_code=201)


@app.get("/passkeys")
async def list_passkeys(ctx: AuthContext = Depends(authz.authenticate)):
    credentials = await globals.passkeys.instance.list_credentials(ctx.user_id)
    return MsgspecResponse([ApiCredential.from_db(c) for c in credentials])


@app.delete("/passkeys/{credential_id}")
async def delete_passkey(
    credential_id: str, ctx: AuthContext = Depends(authz.authenticate_session)
):
    await globals.passkeys.instance.delete_credential_for_user(
        ctx.user_id, credential_id
    )
    return {"message": "Passkey deleted"}


# -------------------------------------------------------------------------
# Sessions and organizations
# -------------------------------------------------------------------------


@app.get("/sessions")
async def list_sessions(ctx: AuthContext = Depends(authz.authenticate_session)):
    sessions = await globals.sessions.instance.list_user_sessions(ctx.user_id)
    return MsgspecResponse([ApiSession.from_db(s, ctx.session_id) for s in sessions])


@app.delete("/sessions/{session_id}")
async def revoke_session(
    session_id: str, ctx: AuthContext = Depends(authz.authenticate_session)
):
    """Revoke one of the user's sessions by its public id."""
    sessions = await globals.sessions.instance.list_user_sessions(ctx.user_id)
    match = [s for s in sessions if session_public_id(s.id) == session_id]
    if not match:
        raise HTTPException(status_code=404, detail="Session not found")
    await globals.sessions.instance.revoke_session(match[0].id)
    return {"message": "Session revoked"}


@app.get("/memberships")
async def list_memberships(ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.memberships.instance.list_memberships(ctx.user_id)
    )


@app.post("/organization")
async def switch_organization(
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate_session),
):
    req = msgspec.convert(payload, OrgSwitch)
    s = await globals.sessions.instance.switch_organization(
        ctx.session_id, req.organization_id
    )
    return MsgspecResponse(
        ApiMe(user_id=s.user_id, organization_id=s.current_organization_id)
    )


@app.delete("/memberships/{organization_id}")
async def leave_organization(
    organization_id: str, ctx: AuthContext = Depends(authz.authenticate)
):
    await globals.memberships.instance.leave_organization(ctx.user_id, organization_id)
    return {"message": "Left organization"}


# -------------------------------------------------------------------------
# API tokens
# -------------------------------------------------------------------------


@app.get("/tokens")
async def list_tokens(ctx: AuthContext = Depends(authz.authenticate_session)):
    tokens = await globals.tokens.instance.list_tokens(ctx.user_id)
    return MsgspecResponse([ApiTokenInfo.from_db(t) for t in tokens])


@app.post("/tokens")
async def create_token(
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate_session),
):
    req = msgspec.convert(payload, TokenCreate)
    created = await globals.tokens.instance.create_token(
        ctx.user_id, ctx.organization_id, req.name
    )
    return MsgspecResponse(
        ApiCreatedToken(ApiTokenInfo.from_db(created.token), created.raw_token),
        status_code=201,
    )


@app.delete("/tokens/{token_id}")
async def revoke_token(
    token_id: str, ctx: AuthContext = Depends(authz.authenticate_session)
):
    try:
        await globals.tokens.instance.revoke_token(ctx.user_id, token_id)
    except TokenError:
        raise HTTPException(status_code=404, detail="Token not found")
    return {"message": "Token revoked"}

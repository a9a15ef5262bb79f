"""Shared exception handlers for the yoink sub-apps."""

import logging

import msgspec
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from yoink.errors import ErrorCode, YoinkError

# Every error code, with the HTTP status it renders as. Authentication
# failures share a single generic 401.
STATUS: dict[ErrorCode, int] = {
    ErrorCode.CHALLENGE_EXPIRED: 400,
    ErrorCode.CHALLENGE_TAMPERED: 400,
    ErrorCode.CHALLENGE_INVALID: 400,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.CREDENTIAL_NOT_FOUND: 404,
    ErrorCode.VERIFICATION_FAILED: 400,
    ErrorCode.COUNTER_REPLAY: 400,
    ErrorCode.CANNOT_DELETE_LAST_PASSKEY: 409,
    ErrorCode.SESSION_NOT_FOUND: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.NO_MEMBERSHIPS: 403,
    ErrorCode.NOT_A_MEMBER: 403,
    ErrorCode.INVALID_TOKEN_FORMAT: 401,
    ErrorCode.TOKEN_NOT_FOUND: 401,
    ErrorCode.INVALID_SECRET: 401,
    ErrorCode.TOKEN_LIMIT_REACHED: 409,
    ErrorCode.ORGANIZATION_NOT_FOUND: 404,
    ErrorCode.ALREADY_MEMBER: 409,
    ErrorCode.MEMBERSHIP_NOT_FOUND: 404,
    ErrorCode.CANNOT_LEAVE_PERSONAL_ORG: 409,
    ErrorCode.LAST_ADMIN: 409,
    ErrorCode.EMAIL_ALREADY_REGISTERED: 409,
    ErrorCode.CAPTURE_NOT_FOUND: 404,
    ErrorCode.CAPTURE_NOT_IN_INBOX: 409,
    ErrorCode.CAPTURE_ALREADY_TRASHED: 409,
    ErrorCode.CAPTURE_NOT_IN_TRASH: 409,
    ErrorCode.INVALID_SNOOZE_TIME: 400,
    ErrorCode.TASK_NOT_FOUND: 404,
    ErrorCode.STORAGE_ERROR: 503,
}


def error_content(exc: YoinkError) -> tuple[int, dict]:
    status = STATUS[exc.code]
    if status == 401:
        return status, {"detail": "Not authenticated"}
    if status == 503:
        return status, {"detail": "Service temporarily unavailable"}
    return status, {"detail": exc.message, "code": exc.code.value}


def install_error_handlers(app: FastAPI) -> None:
    """Register standard exception handlers on *app*."""

    @app.exception_handler(YoinkError)
    async def yoink_error_handler(_request, exc: YoinkError):
        status, content = error_content(exc)
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(msgspec.ValidationError)
    async def validation_error_handler(_request, exc: msgspec.ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def general_exception_handler(_request, exc: Exception):  # pragma: no cover
        logging.exception("Unhandled exception")
        return JSONResponse(
            status_code=500, content={"detail": "Internal server error"}
        )

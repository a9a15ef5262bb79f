"""
Typed failures for the yoink core.

Every expected failure is raised as one exception from a closed family.
Each family accepts only its own error codes, so an HTTP layer or caller can
match on ``exc.code`` knowing exactly which values are possible:

    try:
        ctx = await sessions.validate_session(session_id)
    except SessionError as e:
        if e.code is ErrorCode.SESSION_EXPIRED:
            ...

Programmer errors (bad configuration, broken invariants) stay ValueError or
RuntimeError and are never wrapped into these.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    # Challenge
    CHALLENGE_EXPIRED = "CHALLENGE_EXPIRED"
    CHALLENGE_TAMPERED = "CHALLENGE_TAMPERED"
    CHALLENGE_INVALID = "CHALLENGE_INVALID"
    # Passkeys
    USER_NOT_FOUND = "USER_NOT_FOUND"
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    COUNTER_REPLAY = "COUNTER_REPLAY"
    CANNOT_DELETE_LAST_PASSKEY = "CANNOT_DELETE_LAST_PASSKEY"
    # Sessions
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    NO_MEMBERSHIPS = "NO_MEMBERSHIPS"
    NOT_A_MEMBER = "NOT_A_MEMBER"
    # API tokens
    INVALID_TOKEN_FORMAT = "INVALID_TOKEN_FORMAT"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    INVALID_SECRET = "INVALID_SECRET"
    TOKEN_LIMIT_REACHED = "TOKEN_LIMIT_REACHED"
    # Organizations and memberships
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    ALREADY_MEMBER = "ALREADY_MEMBER"
    MEMBERSHIP_NOT_FOUND = "MEMBERSHIP_NOT_FOUND"
    CANNOT_LEAVE_PERSONAL_ORG = "CANNOT_LEAVE_PERSONAL_ORG"
    LAST_ADMIN = "LAST_ADMIN"
    EMAIL_ALREADY_REGISTERED = "EMAIL_ALREADY_REGISTERED"
    # Captures and tasks
    CAPTURE_NOT_FOUND = "CAPTURE_NOT_FOUND"
    CAPTURE_NOT_IN_INBOX = "CAPTURE_NOT_IN_INBOX"
    CAPTURE_ALREADY_TRASHED = "CAPTURE_ALREADY_TRASHED"
    CAPTURE_NOT_IN_TRASH = "CAPTURE_NOT_IN_TRASH"
    INVALID_SNOOZE_TIME = "INVALID_SNOOZE_TIME"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    # Persistence
    STORAGE_ERROR = "STORAGE_ERROR"


_CHALLENGE_CODES = frozenset(
    {
        ErrorCode.CHALLENGE_EXPIRED,
        ErrorCode.CHALLENGE_TAMPERED,
        ErrorCode.CHALLENGE_INVALID,
    }
)


class YoinkError(Exception):
    """Base class for expected failures. Subclasses fix the allowed codes."""

    codes: frozenset[ErrorCode] = frozenset()

    def __init__(self, code: ErrorCode, message: str | None = None, **details):
        if code not in self.codes:
            raise ValueError(f"{type(self).__name__} cannot carry {code}")
        self.code = code
        self.details = details
        super().__init__(message or code.value)

    @property
    def message(self) -> str:
        return str(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r})"


class ChallengeError(YoinkError):
    codes = _CHALLENGE_CODES


class PasskeyError(YoinkError):
    codes = _CHALLENGE_CODES | {
        ErrorCode.USER_NOT_FOUND,
        ErrorCode.CREDENTIAL_NOT_FOUND,
        ErrorCode.VERIFICATION_FAILED,
        ErrorCode.COUNTER_REPLAY,
        ErrorCode.CANNOT_DELETE_LAST_PASSKEY,
    }


class SessionError(YoinkError):
    codes = frozenset(
        {
            ErrorCode.SESSION_NOT_FOUND,
            ErrorCode.SESSION_EXPIRED,
            ErrorCode.USER_NOT_FOUND,
            ErrorCode.NO_MEMBERSHIPS,
            ErrorCode.NOT_A_MEMBER,
        }
    )


class TokenError(YoinkError):
    codes = frozenset(
        {
            ErrorCode.INVALID_TOKEN_FORMAT,
            ErrorCode.TOKEN_NOT_FOUND,
            ErrorCode.INVALID_SECRET,
            ErrorCode.TOKEN_LIMIT_REACHED,
        }
    )


class MembershipError(YoinkError):
    codes = frozenset(
        {
            ErrorCode.USER_NOT_FOUND,
            ErrorCode.ORGANIZATION_NOT_FOUND,
            ErrorCode.ALREADY_MEMBER,
            ErrorCode.MEMBERSHIP_NOT_FOUND,
            ErrorCode.CANNOT_LEAVE_PERSONAL_ORG,
            ErrorCode.LAST_ADMIN,
            ErrorCode.EMAIL_ALREADY_REGISTERED,
        }
    )


class CaptureError(YoinkError):
    codes = frozenset(
        {
            ErrorCode.CAPTURE_NOT_FOUND,
            ErrorCode.CAPTURE_NOT_IN_INBOX,
            ErrorCode.CAPTURE_ALREADY_TRASHED,
            ErrorCode.CAPTURE_NOT_IN_TRASH,
            ErrorCode.INVALID_SNOOZE_TIME,
        }
    )


class TaskError(YoinkError):
    codes = frozenset({ErrorCode.TASK_NOT_FOUND})


class StorageError(YoinkError):
    """Wraps an underlying persistence failure. Retrying at a higher layer is safe."""

    codes = frozenset({ErrorCode.STORAGE_ERROR})

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(ErrorCode.STORAGE_ERROR, message)
        self.cause = cause


FAMILIES: tuple[type[YoinkError], ...] = (
    ChallengeError,
    PasskeyError,
    SessionError,
    TokenError,
    MembershipError,
    CaptureError,
    TaskError,
    StorageError,
)

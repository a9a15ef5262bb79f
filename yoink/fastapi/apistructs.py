"""API request and response structs.

Responses never carry secrets: no public keys, no token hashes.
Requests are plain dict bodies converted with msgspec.convert.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated

import msgspec

from yoink.db.structs import ApiToken, PasskeyCredential, UserSession
from yoink.util.crypto import public_id

# -------------------------------------------------------------------------
# Responses
# -------------------------------------------------------------------------


def session_public_id(session_id: str) -> str:
    return public_id("session", session_id)


class ApiCredential(msgspec.Struct, kw_only=True):
    id: str
    name: str
    transports: list[str]
    device_type: str
    backed_up: bool
    created_at: datetime
    last_used_at: datetime | None = None

    @classmethod
    def from_db(cls, c: PasskeyCredential) -> ApiCredential:
        return cls(
            id=c.id,
            name=c.name,
            transports=c.transports,
            device_type=c.device_type,
            backed_up=c.backed_up,
            created_at=c.created_at,
            last_used_at=c.last_used_at,
        )


class ApiTokenInfo(msgspec.Struct, kw_only=True):
    id: str
    organization_id: str
    name: str
    created_at: datetime
    last_used_at: datetime | None = None

    @classmethod
    def from_db(cls, t: ApiToken) -> ApiTokenInfo:
        return cls(
            id=t.id,
            organization_id=t.organization_id,
            name=t.name,
            created_at=t.created_at,
            last_used_at=t.last_used_at,
        )


class ApiSession(msgspec.Struct, kw_only=True):
    """A session as shown to its owner. The id is a public handle, never the cookie."""

    id: str
    current_organization_id: str
    created_at: datetime
    expires_at: datetime
    last_active_at: datetime
    current: bool = False

    @classmethod
    def from_db(cls, s: UserSession, current_id: str | None = None) -> ApiSession:
        return cls(
            id=session_public_id(s.id),
            current_organization_id=s.current_organization_id,
            created_at=s.created_at,
            expires_at=s.expires_at,
            last_active_at=s.last_active_at,
            current=s.id == current_id,
        )


class ApiCreatedToken(msgspec.Struct):
    token: ApiTokenInfo
    raw_token: str


class ApiMe(msgspec.Struct, kw_only=True):
    user_id: str
    organization_id: str
    email: str | None = None


# -------------------------------------------------------------------------
# Requests
# -------------------------------------------------------------------------


CaptureContent = Annotated[str, msgspec.Meta(min_length=1, max_length=10000)]
CaptureTitle = Annotated[str, msgspec.Meta(max_length=200)]
SourceApp = Annotated[str, msgspec.Meta(max_length=100)]
TaskTitle = Annotated[str, msgspec.Meta(min_length=1, max_length=500)]
TokenName = Annotated[str, msgspec.Meta(min_length=1, max_length=100)]


class RegisterVerify(msgspec.Struct, kw_only=True):
    challenge: str
    response: dict
    credential_name: str | None = None


class LoginOptions(msgspec.Struct, kw_only=True):
    user_id: str | None = None


class LoginVerify(msgspec.Struct, kw_only=True):
    challenge: str
    response: dict


class SignupOptions(msgspec.Struct, kw_only=True):
    email: str


class SignupVerify(msgspec.Struct, kw_only=True):
    email: str
    user_id: str
    challenge: str
    response: dict
    credential_name: str | None = None


class OrgSwitch(msgspec.Struct, kw_only=True):
    organization_id: str


class TokenCreate(msgspec.Struct, kw_only=True):
    name: TokenName


class CaptureCreate(msgspec.Struct, kw_only=True):
    content: CaptureContent
    title: CaptureTitle | None = None
    source_url: str | None = None
    source_app: SourceApp | None = None


class CaptureSnooze(msgspec.Struct, kw_only=True):
    until: Annotated[datetime, msgspec.Meta(tz=True)]


class CaptureProcess(msgspec.Struct, kw_only=True):
    title: TaskTitle | None = None
    due_date: date | None = None


class TaskCreate(msgspec.Struct, kw_only=True):
    title: TaskTitle
    due_date: date | None = None

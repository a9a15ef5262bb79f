from __future__ import annotations

from datetime import date, datetime
from typing import Literal

import msgspec

Role = Literal["owner", "admin", "member"]
CaptureStatus = Literal["inbox", "trashed", "processed"]

ROLE_RANK: dict[str, int] = {"member": 1, "admin": 2, "owner": 3}


class Organization(msgspec.Struct, kw_only=True):
    id: str
    name: str
    created_at: datetime


class User(msgspec.Struct, kw_only=True):
    id: str
    email: str
    created_at: datetime


class Membership(msgspec.Struct, kw_only=True):
    """A user's membership in an organization.

    Every user has exactly one membership with is_personal_org set, created at
    signup with the owner role.
    """

    user_id: str
    organization_id: str
    role: Role = "member"
    is_personal_org: bool = False
    joined_at: datetime


class PasskeyCredential(msgspec.Struct, kw_only=True):
    """A registered WebAuthn credential.

    Mutable fields: counter, last_used_at, name
    Immutable fields: everything else
    """

    id: str  # base64url credential id, globally unique
    user_id: str
    public_key: bytes
    counter: int = 0
    transports: list[str] = []
    device_type: str = "single_device"
    backed_up: bool = False
    name: str = "Passkey"
    created_at: datetime
    last_used_at: datetime | None = None


class UserSession(msgspec.Struct, kw_only=True):
    id: str
    user_id: str
    current_organization_id: str
    created_at: datetime
    expires_at: datetime
    last_active_at: datetime


class ApiToken(msgspec.Struct, kw_only=True):
    """A bearer token. Only the bcrypt hash of the secret is ever stored."""

    id: str
    user_id: str
    organization_id: str
    token_hash: str
    name: str
    created_at: datetime
    last_used_at: datetime | None = None


class Capture(msgspec.Struct, kw_only=True):
    id: str
    organization_id: str
    created_by_id: str
    content: str
    title: str | None = None
    source_url: str | None = None
    source_app: str | None = None
    status: CaptureStatus = "inbox"
    captured_at: datetime
    updated_at: datetime | None = None
    trashed_at: datetime | None = None
    snoozed_until: datetime | None = None
    pinned_at: datetime | None = None
    processed_at: datetime | None = None
    processed_to_type: str | None = None
    processed_to_id: str | None = None


class Task(msgspec.Struct, kw_only=True):
    id: str
    organization_id: str
    created_by_id: str
    title: str
    capture_id: str | None = None
    due_date: date | None = None
    created_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    pinned_at: datetime | None = None


class AuthContext(msgspec.Struct, frozen=True):
    """Who is making a request and in which organization."""

    user_id: str
    organization_id: str
    session_id: str | None = None
    token_id: str | None = None

"""
Persistence contract for yoink.

Implementations return None for records that do not exist and raise
StorageError for anything the underlying store fails at. Captures and tasks are
soft deleted: once deleted_at is set they are invisible to every method here.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Literal

from yoink.db.structs import (
    ApiToken,
    Capture,
    CaptureStatus,
    Membership,
    Organization,
    PasskeyCredential,
    Task,
    User,
    UserSession,
)

TaskFilter = Literal["today", "upcoming", "all", "completed"]


class DatabaseInterface(ABC):
    """Abstract base class defining the database interface."""

    @abstractmethod
    async def init_db(self) -> None:
        """Initialize database tables."""

    @abstractmethod
    def transaction(self, action: str) -> AbstractAsyncContextManager:
        """Run every store call inside the block in one transaction.

        Commits when the block exits normally, rolls back when it raises.
        """

    # User operations
    @abstractmethod
    async def create_user(self, user: User) -> None:
        """Create a new user."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        """Get user by id."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email, case-insensitively."""

    # Organization operations
    @abstractmethod
    async def create_organization(self, org: Organization) -> None:
        """Add a new organization."""

    @abstractmethod
    async def get_organization(self, org_id: str) -> Organization | None:
        """Get organization by id."""

    # Membership operations
    @abstractmethod
    async def create_membership(self, membership: Membership) -> None:
        """Add a user to an organization."""

    @abstractmethod
    async def get_membership(self, user_id: str, org_id: str) -> Membership | None:
        """Get a user's membership in one organization."""

    @abstractmethod
    async def list_memberships(self, user_id: str) -> list[Membership]:
        """All memberships of a user, personal organization first."""

    @abstractmethod
    async def list_organization_members(self, org_id: str) -> list[Membership]:
        """All memberships of an organization."""

    @abstractmethod
    async def delete_membership(self, user_id: str, org_id: str) -> None:
        """Remove a user from an organization."""

    # Credential operations
    @abstractmethod
    async def create_credential(self, credential: PasskeyCredential) -> None:
        """Store a credential for a user."""

    @abstractmethod
    async def get_credential(self, credential_id: str) -> PasskeyCredential | None:
        """Get credential by its WebAuthn credential id."""

    @abstractmethod
    async def list_credentials(self, user_id: str) -> list[PasskeyCredential]:
        """All credentials of a user, oldest first."""

    @abstractmethod
    async def update_credential_usage(
        self, credential_id: str, counter: int, last_used_at: datetime
    ) -> None:
        """Record a successful authentication."""

    @abstractmethod
    async def delete_credential(self, credential_id: str) -> None:
        """Delete a credential. Missing credentials are ignored."""

    # Session operations
    @abstractmethod
    async def create_session(self, session: UserSession) -> None:
        """Create a new session."""

    @abstractmethod
    async def get_session(self, session_id: str) -> UserSession | None:
        """Get session by id."""

    @abstractmethod
    async def update_session(
        self,
        session_id: str,
        *,
        expires_at: datetime | None = None,
        last_active_at: datetime | None = None,
        current_organization_id: str | None = None,
    ) -> None:
        """Update the given session fields, leaving the others as they are."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete session by id. Missing sessions are ignored."""

    @abstractmethod
    async def list_user_sessions(self, user_id: str) -> list[UserSession]:
        """All sessions of a user, most recently active first."""

    @abstractmethod
    async def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session of a user, returning how many were removed."""

    @abstractmethod
    async def move_user_sessions(self, user_id: str, from_org: str, to_org: str) -> int:
        """Point the user's sessions in one organization at another."""

    @abstractmethod
    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete sessions that expired before now."""

    # Token operations
    @abstractmethod
    async def create_token(self, token: ApiToken) -> None:
        """Store a new API token (hash only)."""

    @abstractmethod
    async def get_token(self, token_id: str) -> ApiToken | None:
        """Get token by id."""

    @abstractmethod
    async def list_tokens(self, user_id: str, org_id: str | None = None) -> list[ApiToken]:
        """Tokens of a user, optionally in one organization, newest first."""

    @abstractmethod
    async def count_tokens(self, user_id: str, org_id: str) -> int:
        """Number of tokens a user holds in an organization."""

    @abstractmethod
    async def touch_token(self, token_id: str, when: datetime) -> None:
        """Set last_used_at of a token."""

    @abstractmethod
    async def delete_token(self, token_id: str) -> None:
        """Delete a token."""

    # Capture operations
    @abstractmethod
    async def create_capture(self, capture: Capture) -> None:
        """Store a new capture."""

    @abstractmethod
    async def get_capture(self, capture_id: str) -> Capture | None:
        """Get a capture that has not been deleted."""

    @abstractmethod
    async def list_captures(
        self,
        org_id: str,
        *,
        status: CaptureStatus | None = None,
        snoozed: bool | None = None,
        now: datetime | None = None,
        limit: int = 50,
    ) -> list[Capture]:
        """Captures of an organization.

        snoozed=True keeps only captures snoozed past now, soonest first;
        snoozed=False drops them. Otherwise newest capture first.
        """

    @abstractmethod
    async def update_capture(self, capture: Capture) -> None:
        """Write the mutable fields of a capture."""

    @abstractmethod
    async def mark_capture_processed(
        self, capture_id: str, task_id: str, when: datetime
    ) -> Capture:
        """Transition an inbox capture to processed in a single conditional write.

        Raises CaptureError(CAPTURE_NOT_FOUND) if the capture is gone and
        CaptureError(CAPTURE_NOT_IN_INBOX) if its status is no longer inbox.
        """

    @abstractmethod
    async def soft_delete_capture(self, capture_id: str, when: datetime) -> None:
        """Hide a capture from all reads."""

    @abstractmethod
    async def soft_delete_trashed_captures(self, org_id: str, when: datetime) -> int:
        """Delete every trashed capture of an organization, returning the count."""

    # Task operations
    @abstractmethod
    async def create_task(self, task: Task) -> None:
        """Store a new task."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        """Get a task that has not been deleted."""

    @abstractmethod
    async def list_tasks(
        self,
        org_id: str,
        *,
        filter: TaskFilter = "all",
        today: date | None = None,
        limit: int = 50,
    ) -> list[Task]:
        """Tasks of an organization, pinned first then newest."""

    @abstractmethod
    async def update_task(self, task: Task) -> None:
        """Write the mutable fields of a task."""

    @abstractmethod
    async def soft_delete_task(self, task_id: str, when: datetime) -> None:
        """Hide a task from all reads."""

"""
Browser sessions.

A session belongs to one user and points at the organization the user is
currently working in. Sessions expire after a fixed lifetime; using a session
in the last stretch before expiry slides the expiry forward again.
"""

import logging
from datetime import timedelta

from yoink.config import SESSION_LIFETIME, SESSION_REFRESH_THRESHOLD
from yoink.db import DatabaseInterface
from yoink.db.structs import AuthContext, UserSession
from yoink.errors import ErrorCode, SessionError, StorageError
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        db: DatabaseInterface,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
        *,
        ttl: timedelta = SESSION_LIFETIME,
        refresh_threshold: timedelta = SESSION_REFRESH_THRESHOLD,
    ):
        if refresh_threshold >= ttl:
            raise ValueError("refresh_threshold must be shorter than ttl")
        self.db = db
        self.clock = clock or SystemClock()
        self.ids = ids or Uuid7Generator(self.clock)
        self.ttl = ttl
        self.refresh_threshold = refresh_threshold

    async def create_session(
        self, user_id: str, organization_id: str | None = None
    ) -> UserSession:
        """Log a user in, starting in the given or their personal organization."""
        if not await self.db.get_user(user_id):
            raise SessionError(ErrorCode.USER_NOT_FOUND)
        memberships = await self.db.list_memberships(user_id)
        if not memberships:
            raise SessionError(ErrorCode.NO_MEMBERSHIPS, "User has no organizations")
        if organization_id is None:
            personal = [m for m in memberships if m.is_personal_org]
            organization_id = (personal or memberships)[0].organization_id
        elif organization_id not in {m.organization_id for m in memberships}:
            raise SessionError(ErrorCode.NOT_A_MEMBER)
        now = self.clock.now()
        session = UserSession(
            id=self.ids.generate(),
            user_id=user_id,
            current_organization_id=organization_id,
            created_at=now,
            expires_at=now + self.ttl,
            last_active_at=now,
        )
        await self.db.create_session(session)
        return session

    async def validate_session(self, session_id: str) -> UserSession:
        session = await self.db.get_session(session_id)
        if not session:
            raise SessionError(ErrorCode.SESSION_NOT_FOUND)
        now = self.clock.now()
        if now > session.expires_at:
            raise SessionError(ErrorCode.SESSION_EXPIRED)
        if session.expires_at - now < self.refresh_threshold:
            expires_at = now + self.ttl
            try:
                await self.db.update_session(
                    session.id, expires_at=expires_at, last_active_at=now
                )
            except StorageError as e:
                logger.warning("Session refresh failed for %s: %s", session.user_id, e)
            else:
                session.expires_at = expires_at
                session.last_active_at = now
        return session

    async def resolve(self, session_id: str) -> AuthContext:
        """Validate a session and return who it authenticates."""
        session = await self.validate_session(session_id)
        return AuthContext(
            user_id=session.user_id,
            organization_id=session.current_organization_id,
            session_id=session.id,
        )

    async def revoke_session(self, session_id: str) -> None:
        await self.db.delete_session(session_id)

    async def revoke_all_user_sessions(self, user_id: str) -> int:
        count = await self.db.delete_user_sessions(user_id)
        logger.info("Revoked %d sessions of user %s", count, user_id)
        return count

    async def list_user_sessions(self, user_id: str) -> list[UserSession]:
        return await self.db.list_user_sessions(user_id)

    async def switch_organization(
        self, session_id: str, organization_id: str
    ) -> UserSession:
        session = await self.db.get_session(session_id)
        if not session:
            raise SessionError(ErrorCode.SESSION_NOT_FOUND)
        if not await self.db.get_membership(session.user_id, organization_id):
            raise SessionError(ErrorCode.NOT_A_MEMBER)
        await self.db.update_session(
            session_id, current_organization_id=organization_id
        )
        session.current_organization_id = organization_id
        return session

    async def cleanup_expired_sessions(self) -> int:
        count = await self.db.delete_expired_sessions(self.clock.now())
        if count:
            logger.info("Removed %d expired sessions", count)
        return count

import logging

import msgspec

from yoink.db import DatabaseInterface
from yoink.db.structs import (
    ROLE_RANK,
    Membership,
    Organization,
    PasskeyCredential,
    Role,
    User,
)
from yoink.errors import ErrorCode, MembershipError
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

logger = logging.getLogger(__name__)


class SignupResult(msgspec.Struct):
    user: User
    organization: Organization
    membership: Membership


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _is_admin(m: Membership) -> bool:
    return m.role in ("owner", "admin")


class MembershipService:
    def __init__(
        self,
        db: DatabaseInterface,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.ids = ids or Uuid7Generator(self.clock)

    async def signup(
        self,
        email: str,
        *,
        user_id: str | None = None,
        credential: PasskeyCredential | None = None,
    ) -> SignupResult:
        """Create a user together with their personal organization.

        When a verified passkey is given it is stored in the same transaction,
        so a failed signup never leaves a user without a way to log in.
        """
        email = normalize_email(email)
        if await self.db.get_user_by_email(email):
            raise MembershipError(
                ErrorCode.EMAIL_ALREADY_REGISTERED, "Email is already registered"
            )
        now = self.clock.now()
        user = User(id=user_id or self.ids.generate(), email=email, created_at=now)
        org = Organization(
            id=self.ids.generate(), name=f"{email}'s Workspace", created_at=now
        )
        membership = Membership(
            user_id=user.id,
            organization_id=org.id,
            role="owner",
            is_personal_org=True,
            joined_at=now,
        )
        async with self.db.transaction("signup"):
            await self.db.create_user(user)
            await self.db.create_organization(org)
            await self.db.create_membership(membership)
            if credential is not None:
                await self.db.create_credential(credential)
        logger.info("Signed up %s", email)
        return SignupResult(user, org, membership)

    async def list_memberships(self, user_id: str) -> list[Membership]:
        return await self.db.list_memberships(user_id)

    async def get_membership(self, user_id: str, org_id: str) -> Membership:
        membership = await self.db.get_membership(user_id, org_id)
        if not membership:
            raise MembershipError(ErrorCode.MEMBERSHIP_NOT_FOUND)
        return membership

    async def personal_membership(self, user_id: str) -> Membership | None:
        for m in await self.db.list_memberships(user_id):
            if m.is_personal_org:
                return m
        return None

    async def add_member(
        self, user_id: str, org_id: str, role: Role = "member"
    ) -> Membership:
        if not await self.db.get_user(user_id):
            raise MembershipError(ErrorCode.USER_NOT_FOUND)
        if not await self.db.get_organization(org_id):
            raise MembershipError(ErrorCode.ORGANIZATION_NOT_FOUND)
        if await self.db.get_membership(user_id, org_id):
            raise MembershipError(ErrorCode.ALREADY_MEMBER)
        membership = Membership(
            user_id=user_id,
            organization_id=org_id,
            role=role,
            joined_at=self.clock.now(),
        )
        await self.db.create_membership(membership)
        return membership

    async def leave_organization(self, user_id: str, org_id: str) -> None:
        """Leave an organization, moving any sessions there back home."""
        membership = await self.get_membership(user_id, org_id)
        if membership.is_personal_org:
            raise MembershipError(
                ErrorCode.CANNOT_LEAVE_PERSONAL_ORG,
                "Cannot leave your personal organization",
            )
        if _is_admin(membership):
            members = await self.db.list_organization_members(org_id)
            if sum(1 for m in members if _is_admin(m)) <= 1:
                raise MembershipError(
                    ErrorCode.LAST_ADMIN, "Organization needs another admin first"
                )
        personal = await self.personal_membership(user_id)
        async with self.db.transaction("leave organization"):
            await self.db.delete_membership(user_id, org_id)
            if personal:
                await self.db.move_user_sessions(
                    user_id, org_id, personal.organization_id
                )

    async def has_role(self, user_id: str, org_id: str, required: Role) -> bool:
        membership = await self.db.get_membership(user_id, org_id)
        if not membership:
            return False
        return ROLE_RANK[membership.role] >= ROLE_RANK[required]

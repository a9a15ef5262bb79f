"""
Async SQLAlchemy implementation of the yoink database.

Every method opens its own short transaction unless it is called inside
``DB.transaction()``, in which case it joins that transaction. The shared
session is tracked in a ContextVar so concurrent requests never see each
other's uncommitted writes.
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime

import msgspec
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    TypeDecorator,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from yoink.config import DB_URL_DEFAULT
from yoink.db import DatabaseInterface, TaskFilter
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
from yoink.errors import CaptureError, ErrorCode, StorageError

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime given to the database")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


# SQLAlchemy Models
class Base(DeclarativeBase):
    pass


class UserModel(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class OrganizationModel(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class MembershipModel(Base):
    __tablename__ = "organization_memberships"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    is_personal_org: Mapped[bool] = mapped_column(Boolean, default=False)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class CredentialModel(Base):
    __tablename__ = "passkey_credentials"

    id: Mapped[str] = mapped_column(String(1024), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transports: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    device_type: Mapped[str] = mapped_column(String(32), nullable=False)
    backed_up: Mapped[bool] = mapped_column(Boolean, default=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class SessionModel(Base):
    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    current_organization_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class TokenModel(Base):
    __tablename__ = "api_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE")
    )
    token_hash: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class CaptureModel(Base):
    __tablename__ = "captures"
    __table_args__ = (Index("ix_captures_org_status", "organization_id", "status"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    source_url: Mapped[str | None] = mapped_column(String, nullable=True)
    source_app: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="inbox")
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    trashed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    snoozed_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    pinned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    processed_to_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    processed_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    pinned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


def _to_struct(cls, model):
    """Build a struct from a model whose columns share the struct's field names."""
    return cls(**{f.name: getattr(model, f.name) for f in msgspec.structs.fields(cls)})


def _to_model(cls, struct):
    return cls(**msgspec.structs.asdict(struct))


class DB(DatabaseInterface):
    """Database class that handles its own connections."""

    def __init__(self, db_url: str = DB_URL_DEFAULT):
        self.engine = create_async_engine(db_url, echo=False)
        self.async_session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )
        self._current: ContextVar[AsyncSession | None] = ContextVar(
            f"yoink_db_{id(self)}", default=None
        )

    @asynccontextmanager
    async def session(self):
        """Provide a session, joining the surrounding transaction if there is one."""
        current = self._current.get()
        if current is not None:
            yield current
            return
        try:
            async with self.async_session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("Database error: %s", e)
            raise StorageError("Database operation failed", e) from e

    @asynccontextmanager
    async def transaction(self, action: str):
        if self._current.get() is not None:
            raise RuntimeError(f"Nested transaction for {action}")
        logger.debug("Transaction: %s", action)
        async with self.session() as session:
            token = self._current.set(session)
            try:
                yield
            finally:
                self._current.reset(token)

    async def init_db(self) -> None:
        """Initialize database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # User operations
    async def create_user(self, user: User) -> None:
        async with self.session() as session:
            session.add(_to_model(UserModel, user))

    async def get_user(self, user_id: str) -> User | None:
        async with self.session() as session:
            model = await session.get(UserModel, user_id)
            return _to_struct(User, model) if model else None

    async def get_user_by_email(self, email: str) -> User | None:
        async with self.session() as session:
            stmt = select(UserModel).where(
                func.lower(UserModel.email) == email.lower()
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _to_struct(User, model) if model else None

    # Organization operations
    async def create_organization(self, org: Organization) -> None:
        async with self.session() as session:
            session.add(_to_model(OrganizationModel, org))

    async def get_organization(self, org_id: str) -> Organization | None:
        async with self.session() as session:
            model = await session.get(OrganizationModel, org_id)
            return _to_struct(Organization, model) if model else None

    # Membership operations
    async def create_membership(self, membership: Membership) -> None:
        async with self.session() as session:
            session.add(_to_model(MembershipModel, membership))

    async def get_membership(self, user_id: str, org_id: str) -> Membership | None:
        async with self.session() as session:
            model = await session.get(MembershipModel, (user_id, org_id))
            return _to_struct(Membership, model) if model else None

    async def list_memberships(self, user_id: str) -> list[Membership]:
        async with self.session() as session:
            stmt = (
                select(MembershipModel)
                .where(MembershipModel.user_id == user_id)
                .order_by(
                    MembershipModel.is_personal_org.desc(),
                    MembershipModel.joined_at,
                )
            )
            result = await session.execute(stmt)
            return [_to_struct(Membership, m) for m in result.scalars()]

    async def list_organization_members(self, org_id: str) -> list[Membership]:
        async with self.session() as session:
            stmt = (
                select(MembershipModel)
                .where(MembershipModel.organization_id == org_id)
                .order_by(MembershipModel.joined_at)
            )
            result = await session.execute(stmt)
            return [_to_struct(Membership, m) for m in result.scalars()]

    async def delete_membership(self, user_id: str, org_id: str) -> None:
        async with self.session() as session:
            await session.execute(
                delete(MembershipModel).where(
                    MembershipModel.user_id == user_id,
                    MembershipModel.organization_id == org_id,
                )
            )

    # Credential operations
    async def create_credential(self, credential: PasskeyCredential) -> None:
        async with self.session() as session:
            session.add(_to_model(CredentialModel, credential))

    async def get_credential(self, credential_id: str) -> PasskeyCredential | None:
        async with self.session() as session:
            model = await session.get(CredentialModel, credential_id)
            return _to_struct(PasskeyCredential, model) if model else None

    async def list_credentials(self, user_id: str) -> list[PasskeyCredential]:
        async with self.session() as session:
            stmt = (
                select(CredentialModel)
                .where(CredentialModel.user_id == user_id)
                .order_by(CredentialModel.created_at)
            )
            result = await session.execute(stmt)
            return [_to_struct(PasskeyCredential, c) for c in result.scalars()]

    async def update_credential_usage(
        self, credential_id: str, counter: int, last_used_at: datetime
    ) -> None:
        async with self.session() as session:
            await session.execute(
                update(CredentialModel)
                .where(CredentialModel.id == credential_id)
                .values(counter=counter, last_used_at=last_used_at)
            )

    async def delete_credential(self, credential_id: str) -> None:
        async with self.session() as session:
            await session.execute(
                delete(CredentialModel).where(CredentialModel.id == credential_id)
            )

    # Session operations
    async def create_session(self, session_: UserSession) -> None:
        async with self.session() as session:
            session.add(_to_model(SessionModel, session_))

    async def get_session(self, session_id: str) -> UserSession | None:
        async with self.session() as session:
            model = await session.get(SessionModel, session_id)
            return _to_struct(UserSession, model) if model else None

    async def update_session(
        self,
        session_id: str,
        *,
        expires_at: datetime | None = None,
        last_active_at: datetime | None = None,
        current_organization_id: str | None = None,
    ) -> None:
        values = {
            k: v
            for k, v in (
                ("expires_at", expires_at),
                ("last_active_at", last_active_at),
                ("current_organization_id", current_organization_id),
            )
            if v is not None
        }
        if not values:
            return
        async with self.session() as session:
            await session.execute(
                update(SessionModel)
                .where(SessionModel.id == session_id)
                .values(**values)
            )

    async def delete_session(self, session_id: str) -> None:
        async with self.session() as session:
            await session.execute(
                delete(SessionModel).where(SessionModel.id == session_id)
            )

    async def list_user_sessions(self, user_id: str) -> list[UserSession]:
        async with self.session() as session:
            stmt = (
                select(SessionModel)
                .where(SessionModel.user_id == user_id)
                .order_by(SessionModel.last_active_at.desc())
            )
            result = await session.execute(stmt)
            return [_to_struct(UserSession, s) for s in result.scalars()]

    async def delete_user_sessions(self, user_id: str) -> int:
        async with self.session() as session:
            result = await session.execute(
                delete(SessionModel).where(SessionModel.user_id == user_id)
            )
            return result.rowcount

    async def move_user_sessions(self, user_id: str, from_org: str, to_org: str) -> int:
        async with self.session() as session:
            result = await session.execute(
                update(SessionModel)
                .where(
                    SessionModel.user_id == user_id,
                    SessionModel.current_organization_id == from_org,
                )
                .values(current_organization_id=to_org)
            )
            return result.rowcount

    async def delete_expired_sessions(self, now: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                delete(SessionModel).where(SessionModel.expires_at < now)
            )
            return result.rowcount

    # Token operations
    async def create_token(self, token: ApiToken) -> None:
        async with self.session() as session:
            session.add(_to_model(TokenModel, token))

    async def get_token(self, token_id: str) -> ApiToken | None:
        async with self.session() as session:
            model = await session.get(TokenModel, token_id)
            return _to_struct(ApiToken, model) if model else None

    async def list_tokens(self, user_id: str, org_id: str | None = None) -> list[ApiToken]:
        async with self.session() as session:
            stmt = select(TokenModel).where(TokenModel.user_id == user_id)
            if org_id is not None:
                stmt = stmt.where(TokenModel.organization_id == org_id)
            stmt = stmt.order_by(TokenModel.created_at.desc())
            result = await session.execute(stmt)
            return [_to_struct(ApiToken, t) for t in result.scalars()]

    async def count_tokens(self, user_id: str, org_id: str) -> int:
        async with self.session() as session:
            stmt = select(func.count()).where(
                TokenModel.user_id == user_id,
                TokenModel.organization_id == org_id,
            )
            return (await session.execute(stmt)).scalar_one()

    async def touch_token(self, token_id: str, when: datetime) -> None:
        async with self.session() as session:
            await session.execute(
                update(TokenModel)
                .where(TokenModel.id == token_id)
                .values(last_used_at=when)
            )

    async def delete_token(self, token_id: str) -> None:
        async with self.session() as session:
            await session.execute(delete(TokenModel).where(TokenModel.id == token_id))

    # Capture operations
    async def create_capture(self, capture: Capture) -> None:
        async with self.session() as session:
            session.add(_to_model(CaptureModel, capture))

    async def get_capture(self, capture_id: str) -> Capture | None:
        async with self.session() as session:
            stmt = select(CaptureModel).where(
                CaptureModel.id == capture_id, CaptureModel.deleted_at.is_(None)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _to_struct(Capture, model) if model else None

    async def list_captures(
        self,
        org_id: str,
        *,
        status: CaptureStatus | None = None,
        snoozed: bool | None = None,
        now: datetime | None = None,
        limit: int = 50,
    ) -> list[Capture]:
        stmt = select(CaptureModel).where(
            CaptureModel.organization_id == org_id,
            CaptureModel.deleted_at.is_(None),
        )
        if status:
            stmt = stmt.where(CaptureModel.status == status)
        if snoozed is not None and now is not None:
            if snoozed:
                stmt = stmt.where(
                    CaptureModel.snoozed_until.is_not(None),
                    CaptureModel.snoozed_until > now,
                )
            else:
                stmt = stmt.where(
                    (CaptureModel.snoozed_until.is_(None))
                    | (CaptureModel.snoozed_until <= now)
                )
        if snoozed:
            stmt = stmt.order_by(CaptureModel.snoozed_until)
        else:
            stmt = stmt.order_by(CaptureModel.captured_at.desc())
        async with self.session() as session:
            result = await session.execute(stmt.limit(limit))
            return [_to_struct(Capture, c) for c in result.scalars()]

    async def update_capture(self, capture: Capture) -> None:
        values = msgspec.structs.asdict(capture)
        for immutable in ("id", "organization_id", "created_by_id", "captured_at"):
            del values[immutable]
        async with self.session() as session:
            await session.execute(
                update(CaptureModel)
                .where(CaptureModel.id == capture.id, CaptureModel.deleted_at.is_(None))
                .values(**values)
            )

    async def mark_capture_processed(
        self, capture_id: str, task_id: str, when: datetime
    ) -> Capture:
        async with self.session() as session:
            result = await session.execute(
                update(CaptureModel)
                .where(
                    CaptureModel.id == capture_id,
                    CaptureModel.deleted_at.is_(None),
                    CaptureModel.status == "inbox",
                )
                .values(
                    status="processed",
                    processed_at=when,
                    processed_to_type="task",
                    processed_to_id=task_id,
                    updated_at=when,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                stmt = select(CaptureModel.status).where(
                    CaptureModel.id == capture_id, CaptureModel.deleted_at.is_(None)
                )
                status = (await session.execute(stmt)).scalar_one_or_none()
                if status is None:
                    raise CaptureError(ErrorCode.CAPTURE_NOT_FOUND)
                raise CaptureError(
                    ErrorCode.CAPTURE_NOT_IN_INBOX,
                    f"Capture is {status}, not inbox",
                    status=status,
                )
            model = await session.get(CaptureModel, capture_id, populate_existing=True)
            return _to_struct(Capture, model)

    async def soft_delete_capture(self, capture_id: str, when: datetime) -> None:
        async with self.session() as session:
            await session.execute(
                update(CaptureModel)
                .where(CaptureModel.id == capture_id, CaptureModel.deleted_at.is_(None))
                .values(deleted_at=when)
            )

    async def soft_delete_trashed_captures(self, org_id: str, when: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                update(CaptureModel)
                .where(
                    CaptureModel.organization_id == org_id,
                    CaptureModel.status == "trashed",
                    CaptureModel.deleted_at.is_(None),
                )
                .values(deleted_at=when)
            )
            return result.rowcount

    # Task operations
    async def create_task(self, task: Task) -> None:
        async with self.session() as session:
            session.add(_to_model(TaskModel, task))

    async def get_task(self, task_id: str) -> Task | None:
        async with self.session() as session:
            stmt = select(TaskModel).where(
                TaskModel.id == task_id, TaskModel.deleted_at.is_(None)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _to_struct(Task, model) if model else None

    async def list_tasks(
        self,
        org_id: str,
        *,
        filter: TaskFilter = "all",
        today: date | None = None,
        limit: int = 50,
    ) -> list[Task]:
        today = today or datetime.now(UTC).date()
        stmt = select(TaskModel).where(
            TaskModel.organization_id == org_id, TaskModel.deleted_at.is_(None)
        )
        match filter:
            case "today":
                stmt = stmt.where(
                    TaskModel.due_date == today, TaskModel.completed_at.is_(None)
                )
            case "upcoming":
                stmt = stmt.where(
                    TaskModel.due_date > today, TaskModel.completed_at.is_(None)
                )
            case "completed":
                stmt = stmt.where(TaskModel.completed_at.is_not(None))
            case _:
                stmt = stmt.where(TaskModel.completed_at.is_(None))
        if filter == "completed":
            stmt = stmt.order_by(TaskModel.completed_at.desc())
        else:
            stmt = stmt.order_by(
                TaskModel.pinned_at.desc().nulls_last(), TaskModel.created_at.desc()
            )
        async with self.session() as session:
            result = await session.execute(stmt.limit(limit))
            return [_to_struct(Task, t) for t in result.scalars()]

    async def update_task(self, task: Task) -> None:
        values = msgspec.structs.asdict(task)
        for immutable in ("id", "organization_id", "created_by_id", "created_at"):
            del values[immutable]
        async with self.session() as session:
            await session.execute(
                update(TaskModel)
                .where(TaskModel.id == task.id, TaskModel.deleted_at.is_(None))
                .values(**values)
            )

    async def soft_delete_task(self, task_id: str, when: datetime) -> None:
        async with self.session() as session:
            await session.execute(
                update(TaskModel)
                .where(TaskModel.id == task_id, TaskModel.deleted_at.is_(None))
                .values(deleted_at=when)
            )

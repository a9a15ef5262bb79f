from typing import Generic, TypeVar

from yoink.authsession import SessionService
from yoink.captures import CaptureService
from yoink.challenge import ChallengeManager
from yoink.config import YoinkConfig
from yoink.db import DatabaseInterface
from yoink.memberships import MembershipService
from yoink.passkeys import PasskeyService
from yoink.processing import ProcessingService
from yoink.sansio import CeremonyVerifier, Passkey
from yoink.tasks import TaskService
from yoink.tokens import TokenService
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

T = TypeVar("T")


class Manager(Generic[T]):
    """Generic manager for global instances."""

    def __init__(self, name: str):
        self._instance: T | None = None
        self._name = name

    @property
    def instance(self) -> T:
        if self._instance is None:
            raise RuntimeError(
                f"{self._name} not initialized. Call globals.init() first."
            )
        return self._instance

    @instance.setter
    def instance(self, instance: T | None) -> None:
        self._instance = instance


async def init(
    config: YoinkConfig,
    *,
    database: DatabaseInterface | None = None,
    verifier: CeremonyVerifier | None = None,
    clock: Clock | None = None,
    ids: IdGenerator | None = None,
) -> None:
    """Initialize the database and wire up every service.

    Tests pass their own database, verifier, clock and id generator.
    """
    clock = clock or SystemClock()
    ids = ids or Uuid7Generator(clock)
    if database is None:
        from yoink.db.sql import DB

        database = DB(config.db_url)
    await database.init_db()
    db.instance = database
    settings.instance = config
    passkeys.instance = PasskeyService(
        database,
        ChallengeManager(config.challenge_secret, clock),
        verifier
        or Passkey(
            rp_id=config.rp_id,
            rp_name=config.effective_rp_name,
            origins=config.effective_origins,
        ),
        clock,
    )
    sessions.instance = SessionService(
        database,
        clock,
        ids,
        ttl=config.session_lifetime,
        refresh_threshold=config.refresh_threshold,
    )
    tokens.instance = TokenService(
        database,
        clock,
        ids,
        max_per_org=config.max_tokens_per_user_per_org,
        bcrypt_rounds=config.bcrypt_rounds,
    )
    memberships.instance = MembershipService(database, clock, ids)
    captures.instance = CaptureService(database, clock, ids)
    tasks.instance = TaskService(database, clock, ids)
    processing.instance = ProcessingService(database, clock, ids)


# Global instances
settings = Manager[YoinkConfig]("Config")
db = Manager[DatabaseInterface]("Database")
passkeys = Manager[PasskeyService]("PasskeyService")
sessions = Manager[SessionService]("SessionService")
tokens = Manager[TokenService]("TokenService")
memberships = Manager[MembershipService]("MembershipService")
captures = Manager[CaptureService]("CaptureService")
tasks = Manager[TaskService]("TaskService")
processing = Manager[ProcessingService]("ProcessingService")

"""
API bearer tokens.

A raw token looks like ``<id>:<secret>``. It is shown to the user once when
created; only a bcrypt hash of the secret is stored.
"""

import asyncio
import logging

import msgspec

from yoink.config import MAX_TOKENS_PER_USER_PER_ORG
from yoink.db import DatabaseInterface
from yoink.db.structs import ApiToken, AuthContext
from yoink.errors import ErrorCode, TokenError, YoinkError
from yoink.util.clock import Clock, SystemClock
from yoink.util.crypto import (
    BCRYPT_MAX_BYTES,
    check_secret_async,
    hash_secret_async,
    token_secret,
)
from yoink.util.ids import IdGenerator, Uuid7Generator

logger = logging.getLogger(__name__)


class CreatedToken(msgspec.Struct):
    token: ApiToken
    raw_token: str


def parse_token(raw: str) -> tuple[str, str]:
    token_id, sep, secret = raw.partition(":")
    if not sep or not token_id or not secret:
        raise TokenError(ErrorCode.INVALID_TOKEN_FORMAT, "Malformed token")
    return token_id, secret


class TokenService:
    def __init__(
        self,
        db: DatabaseInterface,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
        *,
        max_per_org: int = MAX_TOKENS_PER_USER_PER_ORG,
        bcrypt_rounds: int = 12,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.ids = ids or Uuid7Generator(self.clock)
        self.max_per_org = max_per_org
        self.bcrypt_rounds = bcrypt_rounds
        self._background: set[asyncio.Task] = set()

    async def validate_token(self, raw: str) -> AuthContext:
        token_id, secret = parse_token(raw)
        token = await self.db.get_token(token_id)
        if not token:
            raise TokenError(ErrorCode.TOKEN_NOT_FOUND)
        if len(secret.encode()) > BCRYPT_MAX_BYTES:
            raise TokenError(ErrorCode.INVALID_SECRET)
        if not await check_secret_async(secret, token.token_hash):
            logger.warning("Wrong secret for API token %s", token_id)
            raise TokenError(ErrorCode.INVALID_SECRET)
        task = asyncio.create_task(self._touch(token.id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return AuthContext(
            user_id=token.user_id,
            organization_id=token.organization_id,
            token_id=token.id,
        )

    async def _touch(self, token_id: str) -> None:
        try:
            await self.db.touch_token(token_id, self.clock.now())
        except YoinkError as e:
            logger.warning("Could not record use of token %s: %s", token_id, e)

    async def wait_background(self) -> None:
        """Wait for pending last-used updates, e.g. on shutdown."""
        if self._background:
            await asyncio.gather(*self._background)

    async def create_token(self, user_id: str, org_id: str, name: str) -> CreatedToken:
        if await self.db.count_tokens(user_id, org_id) >= self.max_per_org:
            raise TokenError(
                ErrorCode.TOKEN_LIMIT_REACHED,
                f"At most {self.max_per_org} tokens per organization",
            )
        secret = token_secret()
        token = ApiToken(
            id=self.ids.generate(),
            user_id=user_id,
            organization_id=org_id,
            token_hash=await hash_secret_async(secret, self.bcrypt_rounds),
            name=name,
            created_at=self.clock.now(),
        )
        await self.db.create_token(token)
        logger.info("Created API token %s for user %s", token.id, user_id)
        return CreatedToken(token, f"{token.id}:{secret}")

    async def list_tokens(self, user_id: str, org_id: str | None = None) -> list[ApiToken]:
        return await self.db.list_tokens(user_id, org_id)

    async def revoke_token(self, user_id: str, token_id: str) -> None:
        token = await self.db.get_token(token_id)
        if not token or token.user_id != user_id:
            raise TokenError(ErrorCode.TOKEN_NOT_FOUND)
        await self.db.delete_token(token_id)

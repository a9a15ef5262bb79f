"""
Passkey registration and authentication ceremonies.

Each ceremony is two calls: options (which embed a signed challenge) and
verify. The challenge string travels to the browser and back, so the server
keeps no state between the two calls.
"""

import logging

import msgspec

from yoink.challenge import ChallengeManager, Purpose, ValidatedChallenge
from yoink.db import DatabaseInterface
from yoink.db.structs import PasskeyCredential
from yoink.errors import ChallengeError, ErrorCode, PasskeyError
from yoink.sansio import CeremonyVerifier
from yoink.util.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_NAME = "Passkey"


class CeremonyOptions(msgspec.Struct):
    options: dict
    challenge: str


class AuthenticatedCredential(msgspec.Struct, frozen=True):
    user_id: str
    credential_id: str


class PasskeyService:
    def __init__(
        self,
        db: DatabaseInterface,
        challenges: ChallengeManager,
        verifier: CeremonyVerifier,
        clock: Clock | None = None,
    ):
        self.db = db
        self.challenges = challenges
        self.verifier = verifier
        self.clock = clock or SystemClock()

    def _validate(self, challenge: str, purpose: Purpose) -> ValidatedChallenge:
        try:
            return self.challenges.validate_challenge(challenge, purpose)
        except ChallengeError as e:
            raise PasskeyError(e.code, e.message) from e

    ### Registration ###

    async def generate_registration_options(self, user_id: str) -> CeremonyOptions:
        """Options for adding a passkey to an existing user."""
        user = await self.db.get_user(user_id)
        if not user:
            raise PasskeyError(ErrorCode.USER_NOT_FOUND, "User not found")
        existing = await self.db.list_credentials(user_id)
        challenge = self.challenges.generate_registration_challenge(user_id)
        options = self.verifier.reg_generate_options(
            user_id=user_id,
            user_name=user.email,
            challenge=challenge.encode(),
            credential_ids=[c.id for c in existing],
        )
        return CeremonyOptions(options, challenge)

    def generate_signup_registration_options(
        self, email: str, identifier: str
    ) -> CeremonyOptions:
        """Options for a user that does not exist yet.

        The challenge is bound to ``identifier``, which becomes the new user's id
        when the signup completes.
        """
        challenge = self.challenges.generate_registration_challenge(identifier)
        options = self.verifier.reg_generate_options(
            user_id=identifier,
            user_name=email,
            challenge=challenge.encode(),
        )
        return CeremonyOptions(options, challenge)

    def check_registration(
        self,
        user_id: str,
        challenge: str,
        response: dict | str,
        credential_name: str | None = None,
    ) -> PasskeyCredential:
        """Verify a registration response without storing anything."""
        validated = self._validate(challenge, "registration")
        if validated.payload.user_id != user_id:
            logger.warning("Registration challenge issued for a different user")
            raise PasskeyError(
                ErrorCode.VERIFICATION_FAILED, "Challenge was issued for another user"
            )
        result = self.verifier.reg_verify(response, validated.raw_challenge)
        return PasskeyCredential(
            id=result.credential_id,
            user_id=user_id,
            public_key=result.public_key,
            counter=result.sign_count,
            transports=result.transports,
            device_type=result.device_type,
            backed_up=result.backed_up,
            name=credential_name or DEFAULT_CREDENTIAL_NAME,
            created_at=self.clock.now(),
        )

    async def verify_registration(
        self,
        user_id: str,
        challenge: str,
        response: dict | str,
        credential_name: str | None = None,
    ) -> PasskeyCredential:
        credential = self.check_registration(
            user_id, challenge, response, credential_name
        )
        await self.db.create_credential(credential)
        logger.info("Registered passkey %s for user %s", credential.name, user_id)
        return credential

    ### Authentication ###

    async def generate_authentication_options(
        self, user_id: str | None = None
    ) -> CeremonyOptions:
        """Options for logging in.

        Without a user the browser offers any discoverable passkey for this site.
        """
        credential_ids = None
        if user_id is not None:
            credentials = await self.db.list_credentials(user_id)
            if not credentials:
                raise PasskeyError(ErrorCode.USER_NOT_FOUND, "User not found")
            credential_ids = [c.id for c in credentials]
        challenge = self.challenges.generate_authentication_challenge(user_id)
        options = self.verifier.auth_generate_options(
            challenge.encode(), credential_ids
        )
        return CeremonyOptions(options, challenge)

    async def verify_authentication(
        self, challenge: str, response: dict | str
    ) -> AuthenticatedCredential:
        validated = self._validate(challenge, "authentication")
        credential_id = self.verifier.credential_id(response)
        stored = await self.db.get_credential(credential_id)
        if not stored:
            raise PasskeyError(ErrorCode.CREDENTIAL_NOT_FOUND, "Credential not registered")
        result = self.verifier.auth_verify(
            response, validated.raw_challenge, stored.public_key, stored.counter
        )
        # Authenticators that do not count always report zero
        if stored.counter > 0 and result.new_sign_count <= stored.counter:
            logger.warning(
                "Signature counter went from %d to %d for credential %s",
                stored.counter,
                result.new_sign_count,
                credential_id,
            )
            raise PasskeyError(
                ErrorCode.COUNTER_REPLAY, "Credential may have been cloned"
            )
        await self.db.update_credential_usage(
            credential_id, result.new_sign_count, self.clock.now()
        )
        return AuthenticatedCredential(stored.user_id, credential_id)

    ### Management ###

    async def list_credentials(self, user_id: str) -> list[PasskeyCredential]:
        return await self.db.list_credentials(user_id)

    async def delete_credential(self, credential_id: str) -> None:
        """Unconditional delete; callers guard against removing the last passkey."""
        await self.db.delete_credential(credential_id)

    async def delete_credential_for_user(self, user_id: str, credential_id: str) -> None:
        async with self.db.transaction("delete passkey"):
            credentials = await self.db.list_credentials(user_id)
            if credential_id not in {c.id for c in credentials}:
                raise PasskeyError(ErrorCode.CREDENTIAL_NOT_FOUND, "Credential not found")
            if len(credentials) == 1:
                raise PasskeyError(
                    ErrorCode.CANNOT_DELETE_LAST_PASSKEY,
                    "Cannot delete your last passkey",
                )
            await self.db.delete_credential(credential_id)

"""
Stateless WebAuthn challenges.

A challenge is a signed, purpose-bound, time-boxed nonce. Nothing is stored on
the server: everything needed to validate it travels in the string itself.

Wire format::

    base64url(JSON payload) "." base64url(HMAC-SHA256(payload bytes))

The ASCII bytes of the whole string are what the browser signs as the WebAuthn
challenge, so a response is bound to exactly one issued challenge.
"""

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Literal

import base64url
import msgspec

from yoink.config import CHALLENGE_TTL
from yoink.errors import ChallengeError, ErrorCode
from yoink.util.clock import Clock, SystemClock, to_ms
from yoink.util.crypto import b64dec_strict, sign

logger = logging.getLogger(__name__)

Purpose = Literal["registration", "authentication"]

MIN_SECRET_BYTES = 32
NONCE_BYTES = 32
SIGNATURE_BYTES = 32
# Smallest possible encoded payload: {"purpose":"registration",...} with a nonce
MIN_PAYLOAD_BYTES = 16


class ChallengePayload(msgspec.Struct, kw_only=True, omit_defaults=True):
    purpose: Purpose
    nonce: str
    issued_at_ms: int = msgspec.field(name="issuedAtMs")
    user_id: str | None = msgspec.field(default=None, name="userId")


class ValidatedChallenge(msgspec.Struct, frozen=True):
    payload: ChallengePayload
    raw_challenge: bytes


_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder(ChallengePayload)


class ChallengeManager:
    def __init__(
        self,
        secret: str | bytes,
        clock: Clock | None = None,
        ttl: timedelta = CHALLENGE_TTL,
    ):
        key = secret.encode() if isinstance(secret, str) else secret
        if len(key) < MIN_SECRET_BYTES:
            raise ValueError(
                f"Challenge secret must be at least {MIN_SECRET_BYTES} bytes"
            )
        self._key = key
        self.clock = clock or SystemClock()
        self.ttl_ms = int(ttl.total_seconds() * 1000)

    def generate_registration_challenge(self, user_id: str) -> str:
        return self._generate("registration", user_id)

    def generate_authentication_challenge(self, user_id: str | None = None) -> str:
        return self._generate("authentication", user_id)

    def _generate(self, purpose: Purpose, user_id: str | None) -> str:
        payload = ChallengePayload(
            purpose=purpose,
            user_id=user_id,
            nonce=base64url.enc(secrets.token_bytes(NONCE_BYTES)),
            issued_at_ms=to_ms(self.clock.now()),
        )
        data = _encoder.encode(payload)
        return f"{base64url.enc(data)}.{base64url.enc(sign(self._key, data))}"

    def validate_challenge(
        self, encoded: str, expected_purpose: Purpose
    ) -> ValidatedChallenge:
        """Check signature, purpose and age of a challenge.

        Raises ChallengeError with CHALLENGE_INVALID for anything malformed or
        issued for another purpose, CHALLENGE_TAMPERED when the signature does
        not match, and CHALLENGE_EXPIRED once the TTL has elapsed.
        """
        try:
            payload_part, sig_part = encoded.split(".")
            data = b64dec_strict(payload_part)
            signature = b64dec_strict(sig_part)
        except (ValueError, TypeError, AttributeError):
            raise ChallengeError(ErrorCode.CHALLENGE_INVALID, "Malformed challenge")
        if len(data) < MIN_PAYLOAD_BYTES or len(signature) != SIGNATURE_BYTES:
            raise ChallengeError(ErrorCode.CHALLENGE_INVALID, "Malformed challenge")
        if not hmac.compare_digest(signature, sign(self._key, data)):
            logger.warning("Rejected challenge with a bad signature")
            raise ChallengeError(ErrorCode.CHALLENGE_TAMPERED, "Challenge signature mismatch")
        try:
            payload = _decoder.decode(data)
        except msgspec.DecodeError:
            raise ChallengeError(ErrorCode.CHALLENGE_INVALID, "Malformed challenge")
        if payload.purpose != expected_purpose:
            raise ChallengeError(
                ErrorCode.CHALLENGE_INVALID,
                f"Challenge was issued for {payload.purpose}",
            )
        if to_ms(self.clock.now()) - payload.issued_at_ms >= self.ttl_ms:
            raise ChallengeError(ErrorCode.CHALLENGE_EXPIRED, "Challenge expired")
        return ValidatedChallenge(payload, encoded.encode("ascii"))

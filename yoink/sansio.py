"""
WebAuthn ceremony handler that wraps py_webauthn.

This module does no I/O and keeps no state between calls. Challenges are
issued by yoink.challenge and passed in as bytes; the verified results come back
as plain structs for the passkey service to persist.
"""

import json
from typing import Protocol

import base64url
import msgspec
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import (
    options_to_json,
    parse_authentication_credential_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from yoink.errors import ErrorCode, PasskeyError


class RegistrationResult(msgspec.Struct, kw_only=True):
    credential_id: str  # base64url
    public_key: bytes
    sign_count: int
    transports: list[str] = []
    device_type: str = "single_device"
    backed_up: bool = False


class AuthenticationResult(msgspec.Struct, kw_only=True):
    new_sign_count: int
    user_verified: bool = False


class CeremonyVerifier(Protocol):
    """What the passkey service needs from a WebAuthn implementation."""

    def reg_generate_options(
        self,
        user_id: str,
        user_name: str,
        challenge: bytes,
        credential_ids: list[str] | None = None,
    ) -> dict: ...

    def reg_verify(self, response: dict | str, expected_challenge: bytes) -> RegistrationResult: ...

    def auth_generate_options(
        self, challenge: bytes, credential_ids: list[str] | None = None
    ) -> dict: ...

    def credential_id(self, response: dict | str) -> str: ...

    def auth_verify(
        self,
        response: dict | str,
        expected_challenge: bytes,
        public_key: bytes,
        sign_count: int,
    ) -> AuthenticationResult: ...


class Passkey:
    """WebAuthn handler for registration and authentication operations."""

    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origins: list[str],
        supported_pub_key_algs: list[COSEAlgorithmIdentifier] | None = None,
    ):
        """
        Args:
            rp_id: Your security domain (e.g. "example.com")
            rp_name: The relying party name shown to users
            origins: Accepted origins, with scheme and port but no path
            supported_pub_key_algs: COSE algorithms (default EdDSA, ES256, RS256)
        """
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origins = origins
        self.supported_pub_key_algs = supported_pub_key_algs or [
            COSEAlgorithmIdentifier.EDDSA,
            COSEAlgorithmIdentifier.ECDSA_SHA_256,
            COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
        ]

    ### Registration Methods ###

    def reg_generate_options(
        self,
        user_id: str,
        user_name: str,
        challenge: bytes,
        credential_ids: list[str] | None = None,
    ) -> dict:
        """
        Generate registration options for WebAuthn registration.

        Args:
            user_id: The user (or signup) identifier
            user_name: Shown by the authenticator, usually the email
            challenge: Signed challenge bytes from ChallengeManager
            credential_ids: Existing credential ids of the user, excluded so the
                same authenticator is not registered twice.
        """
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=user_id.encode(),
            user_name=user_name,
            challenge=challenge,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.REQUIRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            exclude_credentials=_convert_credential_ids(credential_ids),
            supported_pub_key_algs=self.supported_pub_key_algs,
        )
        return json.loads(options_to_json(options))

    def reg_verify(
        self, response: dict | str, expected_challenge: bytes
    ) -> RegistrationResult:
        """Verify a registration response; PasskeyError(VERIFICATION_FAILED) on any failure."""
        try:
            credential = parse_registration_credential_json(response)
            registration = verify_registration_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_origin=self.origins,
                expected_rp_id=self.rp_id,
            )
        except WebAuthnException as e:
            raise PasskeyError(ErrorCode.VERIFICATION_FAILED, str(e)) from e
        transports = credential.response.transports or []
        return RegistrationResult(
            credential_id=base64url.enc(registration.credential_id),
            public_key=registration.credential_public_key,
            sign_count=registration.sign_count,
            transports=[t.value for t in transports],
            device_type=registration.credential_device_type.value,
            backed_up=registration.credential_backed_up,
        )

    ### Authentication Methods ###

    def auth_generate_options(
        self,
        challenge: bytes,
        credential_ids: list[str] | None = None,
        *,
        user_verification_required=False,
    ) -> dict:
        """
        Generate authentication options for WebAuthn authentication.

        Args:
            challenge: Signed challenge bytes from ChallengeManager
            credential_ids: Credential ids of a known user, or None for the
                discoverable credential flow where the browser offers a choice.
            user_verification_required: Force PIN or biometrics.
        """
        options = generate_authentication_options(
            rp_id=self.rp_id,
            challenge=challenge,
            user_verification=(
                UserVerificationRequirement.REQUIRED
                if user_verification_required
                else UserVerificationRequirement.PREFERRED
            ),
            allow_credentials=_convert_credential_ids(credential_ids),
        )
        return json.loads(options_to_json(options))

    def credential_id(self, response: dict | str) -> str:
        """The base64url credential id an authentication response refers to."""
        try:
            credential = parse_authentication_credential_json(response)
        except WebAuthnException as e:
            raise PasskeyError(ErrorCode.VERIFICATION_FAILED, str(e)) from e
        return base64url.enc(credential.raw_id)

    def auth_verify(
        self,
        response: dict | str,
        expected_challenge: bytes,
        public_key: bytes,
        sign_count: int,
    ) -> AuthenticationResult:
        """Verify an authentication response against the stored public key and counter."""
        try:
            verification = verify_authentication_response(
                credential=parse_authentication_credential_json(response),
                expected_challenge=expected_challenge,
                expected_origin=self.origins,
                expected_rp_id=self.rp_id,
                credential_public_key=public_key,
                credential_current_sign_count=sign_count,
            )
        except WebAuthnException as e:
            raise PasskeyError(ErrorCode.VERIFICATION_FAILED, str(e)) from e
        return AuthenticationResult(
            new_sign_count=verification.new_sign_count,
            user_verified=verification.user_verified,
        )


def _convert_credential_ids(
    credential_ids: list[str] | None,
) -> list[PublicKeyCredentialDescriptor] | None:
    """Convert base64url credential ids to descriptors, or pass through None."""
    if credential_ids is None:
        return None
    return [PublicKeyCredentialDescriptor(id=base64url.dec(c)) for c in credential_ids]

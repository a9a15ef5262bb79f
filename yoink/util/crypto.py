import asyncio
import hashlib
import hmac
import secrets

import base64url
import bcrypt

# bcrypt only looks at the first 72 bytes; longer secrets are refused outright.
BCRYPT_MAX_BYTES = 72


def sign(key: bytes, data: bytes) -> bytes:
    """HMAC-SHA256 of data under key."""
    return hmac.new(key, data, hashlib.sha256).digest()


def b64dec_strict(s: str) -> bytes:
    """Decode base64url, refusing anything that does not re-encode identically."""
    data = base64url.dec(s)
    if base64url.enc(data) != s:
        raise ValueError("Non-canonical base64url")
    return data


def public_id(*data: str | bytes, length=12) -> str:
    """A stable public handle for a secret. The first argument namespaces it."""
    p = [d.encode() if hasattr(d, "encode") else d for d in data]
    p += [len(x).to_bytes(8, "little") for x in [p, *p]]
    return base64url.enc(hashlib.sha256(b"".join(p)).digest()[:length])


def token_secret() -> str:
    return secrets.token_urlsafe(32)


def hash_secret(secret: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds)).decode()


def check_secret(secret: str, hashed: str) -> bool:
    data = secret.encode()
    if len(data) > BCRYPT_MAX_BYTES:
        return False
    return bcrypt.checkpw(data, hashed.encode())


async def hash_secret_async(secret: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(hash_secret, secret, rounds)


async def check_secret_async(secret: str, hashed: str) -> bool:
    """Verify a secret against its bcrypt hash off the event loop."""
    return await asyncio.to_thread(check_secret, secret, hashed)

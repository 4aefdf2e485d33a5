"""
Secret handling: opaque token generation, bcrypt hashing of client secrets, keyed digests for
token lookup, and PKCE (RFC 7636) challenge computation.
"""
import hashlib
import hmac
import secrets
from base64 import urlsafe_b64encode

import bcrypt

from oidc_provider import config
from oidc_provider.keys import get_token_lookup_key

_MIN_TOKEN_BYTES = 16


def generate_token(byte_length: int = 32) -> str:
    """Random hex string with byte_length bytes of entropy (at least 16)."""
    if byte_length < _MIN_TOKEN_BYTES:
        raise ValueError(f"token length must be at least {_MIN_TOKEN_BYTES} bytes")
    return secrets.token_hex(byte_length)


def hash_secret(secret: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = secret.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    if not secret or not hashed:
        return False
    raw = secret.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def token_digest(token: str) -> str:
    """Deterministic HMAC-SHA256 of an opaque token; stored in an indexed column instead of the token."""
    return hmac.new(get_token_lookup_key(), token.encode("utf-8"), hashlib.sha256).hexdigest()


def pkce_challenge(verifier: str, method: str) -> str:
    """plain: verifier unchanged. S256: base64url(SHA-256(verifier)) without padding."""
    if method == "plain":
        return verifier
    if method == "S256":
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    raise ValueError(f"Unsupported code_challenge_method: {method!r}")


def pkce_verify(verifier: str, challenge: str, method: str) -> bool:
    try:
        computed = pkce_challenge(verifier, method)
    except (ValueError, UnicodeEncodeError):
        return False
    return hmac.compare_digest(computed.encode("utf-8"), challenge.encode("utf-8"))

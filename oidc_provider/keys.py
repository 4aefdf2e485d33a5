"""
Key material: RSA key(s) for signing ID tokens (current + optional previous for rotation) and the
HMAC key used to index opaque tokens. Loaded from file or generated and persisted; no key material in code.
New ID tokens use the current key; JWKS exposes all keys so tokens signed with the previous key still verify.
"""
import base64
import logging
import secrets
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey, generate_private_key

from oidc_provider import config

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
_KID_CURRENT = "oauth-rsa-key-1"
_KID_PREVIOUS = "oauth-rsa-key-0"


class SigningKeyUnavailable(RuntimeError):
    """No usable private key; callers must fail the request rather than issue unsigned tokens."""


def _generate_key() -> RSAPrivateKey:
    return generate_private_key(public_exponent=65537, key_size=_KEY_BITS)


def _serialize_private(key: RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _deserialize_private(pem: bytes) -> RSAPrivateKey:
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("signing key is not an RSA private key")
    return key


def load_or_create_signing_key(path: str, generate: bool = True) -> RSAPrivateKey:
    """
    Load RSA private key from path. If missing (or unreadable) and generate is set, create one and save it.
    Raises SigningKeyUnavailable when there is no key and generation is disabled.
    """
    p = Path(path)
    if p.exists():
        try:
            return _deserialize_private(p.read_bytes())
        except (OSError, ValueError) as e:
            if not generate:
                raise SigningKeyUnavailable(f"Cannot load signing key from {path}") from e
            logger.warning("Failed to load signing key from %s: %s; generating new key", path, e)
    elif not generate:
        raise SigningKeyUnavailable(f"Signing key {path} does not exist")
    key = _generate_key()
    try:
        p.write_bytes(_serialize_private(key))
        p.chmod(0o600)
        logger.info("Generated and saved signing key to %s", path)
    except OSError as e:
        logger.warning("Could not save signing key to %s: %s", path, e)
    return key


def _load_previous_key(path: str) -> RSAPrivateKey | None:
    """Load optional previous key (for rotation). Returns None if missing/invalid."""
    p = Path(path)
    if not p.exists():
        return None
    try:
        return _deserialize_private(p.read_bytes())
    except (OSError, ValueError) as e:
        logger.warning("Failed to load previous signing key from %s: %s", path, e)
        return None


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def public_key_to_jwk(public_key: RSAPublicKey, kid: str) -> dict:
    """Export an RSA public key as a JWK with the given kid."""
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "alg": config.ID_TOKEN_ALG,
        "use": "sig",
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
    }


# Process cache, filled on first use
_current_key: RSAPrivateKey | None = None
_keys_by_kid: dict[str, RSAPrivateKey] = {}
_lookup_key: bytes | None = None


def _ensure_keys_loaded() -> None:
    global _current_key
    if _current_key is not None:
        return
    key = load_or_create_signing_key(config.SIGNING_KEY_PATH, config.GENERATE_SIGNING_KEY)
    _keys_by_kid[_KID_CURRENT] = key
    if config.SIGNING_KEY_PREVIOUS_PATH:
        prev = _load_previous_key(config.SIGNING_KEY_PREVIOUS_PATH)
        if prev is not None:
            _keys_by_kid[_KID_PREVIOUS] = prev
            logger.info("Loaded previous signing key (kid=%s) for rotation", _KID_PREVIOUS)
    _current_key = key


def get_signing_key() -> tuple[RSAPrivateKey, str]:
    """Return the current private key and its kid for signing new ID tokens."""
    _ensure_keys_loaded()
    return _current_key, _KID_CURRENT


def get_public_key_for_kid(kid: str) -> RSAPublicKey | None:
    """Public key for the given kid, or None if unknown."""
    _ensure_keys_loaded()
    private_key = _keys_by_kid.get(kid)
    if private_key is None:
        return None
    return private_key.public_key()


def get_jwks() -> dict:
    """JWKS with all keys (current + previous)."""
    _ensure_keys_loaded()
    return {"keys": [public_key_to_jwk(k.public_key(), kid) for kid, k in _keys_by_kid.items()]}


def get_token_lookup_key() -> bytes:
    """HMAC key for token digests. Loaded from file, or generated and saved on first use."""
    global _lookup_key
    if _lookup_key is not None:
        return _lookup_key
    p = Path(config.TOKEN_LOOKUP_KEY_PATH)
    if p.exists():
        raw = p.read_bytes().strip()
        if len(raw) < 32:
            raise SigningKeyUnavailable(f"Token lookup key in {p} is too short")
        _lookup_key = raw
        return _lookup_key
    raw = secrets.token_hex(32).encode("ascii")
    try:
        p.write_bytes(raw)
        p.chmod(0o600)
        logger.info("Generated and saved token lookup key to %s", p)
    except OSError as e:
        logger.warning("Could not save token lookup key to %s: %s; tokens will not survive a restart", p, e)
    _lookup_key = raw
    return _lookup_key


def reset_key_cache() -> None:
    """Forget cached keys so the next call reloads them from config (tests, rotation)."""
    global _current_key, _lookup_key
    _current_key = None
    _lookup_key = None
    _keys_by_kid.clear()

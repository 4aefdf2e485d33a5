"""
OIDC provider configuration. Values come from the environment with development defaults.
No secrets in this file; key material lives in files referenced below or in env.
"""
import os
import re
from datetime import timedelta


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_expiry(expiry: str) -> timedelta:
    """Parse a duration such as '30s', '15m', '1h' or '30d'."""
    match = re.fullmatch(r"(\d+)([smhd])", (expiry or "").strip())
    if not match:
        raise ValueError(f"Invalid expiry format: {expiry!r}")
    value, unit = int(match.group(1)), match.group(2)
    seconds = {"s": 1, "m": 60, "h": 3600, "d": 86400}[unit]
    return timedelta(seconds=value * seconds)


# Fixed issuer URL. Empty means derive it per request from host and protocol.
ISSUER = os.environ.get("OAUTH_ISSUER", "").strip().rstrip("/") or None

DATABASE_URL = os.environ.get("AUTH_DATABASE_URL", "sqlite:///./oidc_provider.db")

# Authorization codes are single-use and live for 10 minutes
CODE_TTL = timedelta(minutes=10)

ACCESS_TOKEN_TTL = parse_expiry(os.environ.get("OAUTH_ACCESS_TOKEN_EXPIRE", "1h"))
REFRESH_TOKEN_TTL = parse_expiry(os.environ.get("OAUTH_REFRESH_TOKEN_EXPIRE", "30d"))
ID_TOKEN_TTL = timedelta(hours=1)

# Scope set used when a request names none, and the default allowed_scopes of new clients
DEFAULT_SCOPES = ("openid", "profile", "email")
SUPPORTED_SCOPES = ("openid", "profile", "email")

PKCE_METHODS = ("plain", "S256")

ID_TOKEN_ALG = "RS256"

# bcrypt cost for client secrets
BCRYPT_ROUNDS = int(os.environ.get("OAUTH_BCRYPT_ROUNDS", "10"))

# RSA private key used to sign ID tokens; generated and saved on first start unless disabled.
SIGNING_KEY_PATH = os.environ.get("OAUTH_SIGNING_KEY_PATH", ".oidc_signing_key.pem")
SIGNING_KEY_PREVIOUS_PATH = os.environ.get("OAUTH_SIGNING_KEY_PREVIOUS_PATH", "").strip() or None
GENERATE_SIGNING_KEY = _env_flag("OAUTH_GENERATE_SIGNING_KEY", True)

# HMAC key for the indexed digest of access/refresh tokens
TOKEN_LOOKUP_KEY_PATH = os.environ.get("OAUTH_TOKEN_LOOKUP_KEY_PATH", ".oidc_token_lookup.key")

# Secret of the first-party session JWT that identifies the resource owner. Unset disables it.
SESSION_JWT_SECRET = os.environ.get("OAUTH_SESSION_JWT_SECRET") or None
SESSION_JWT_ALGORITHMS = ["HS256"]

LOGIN_URL = os.environ.get("OAUTH_LOGIN_URL", "/login")

ROTATE_REFRESH_TOKENS = _env_flag("OAUTH_ROTATE_REFRESH_TOKENS", False)
CONSENT_REQUIRE_SUPERSET = _env_flag("OAUTH_CONSENT_REQUIRE_SUPERSET", True)

RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("OAUTH_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))

CLEANUP_ON_STARTUP = _env_flag("OAUTH_CLEANUP_ON_STARTUP", True)

"""
Well-known endpoints: JWKS and OpenID Connect discovery.
"""
import logging

from fastapi import APIRouter, Request

from oidc_provider import config
from oidc_provider.errors import ServerError
from oidc_provider.issuer import resolve_issuer
from oidc_provider.keys import SigningKeyUnavailable, get_jwks

logger = logging.getLogger(__name__)
router = APIRouter()

CLAIMS_SUPPORTED = [
    "sub",
    "iss",
    "aud",
    "exp",
    "iat",
    "nonce",
    "name",
    "preferred_username",
    "email",
    "email_verified",
    "updated_at",
]


@router.get("/.well-known/jwks.json")
def jwks_json():
    """JSON Web Key Set for ID token signature verification."""
    try:
        return get_jwks()
    except SigningKeyUnavailable:
        logger.exception("JWKS requested but no signing key is available")
        raise ServerError("Signing key unavailable")


@router.get("/.well-known/openid-configuration")
def openid_configuration(request: Request):
    """OpenID Connect discovery document. URLs follow the issuer resolved for this request."""
    issuer = resolve_issuer(request)
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "userinfo_endpoint": f"{issuer}/oauth/userinfo",
        "revocation_endpoint": f"{issuer}/oauth/revoke",
        "introspection_endpoint": f"{issuer}/oauth/introspect",
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "scopes_supported": list(config.SUPPORTED_SCOPES),
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": [config.ID_TOKEN_ALG],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic"],
        "claims_supported": CLAIMS_SUPPORTED,
        "code_challenge_methods_supported": list(config.PKCE_METHODS),
    }

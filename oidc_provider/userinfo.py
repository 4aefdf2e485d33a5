"""
OIDC UserInfo endpoint (GET /oauth/userinfo). OAuth2 access token required; claims filtered by granted scope.
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from oidc_provider.bearer import Principal, require_oauth2_principal

router = APIRouter()


def claims_for_scopes(principal: Principal) -> dict:
    """
    sub always; preferred_username with openid or profile; name, username, updated_at with profile;
    email, email_verified with email.
    """
    user = principal.user
    scopes = set(principal.scopes)
    claims: dict = {"sub": str(user.id)}

    if "openid" in scopes or "profile" in scopes:
        claims["preferred_username"] = user.username

    if "profile" in scopes:
        claims["name"] = user.full_name or user.username
        claims["username"] = user.username
        if user.updated_at is not None:
            claims["updated_at"] = int(user.updated_at.timestamp())

    if "email" in scopes:
        claims["email"] = user.email
        claims["email_verified"] = bool(user.is_verified)

    return claims


@router.get("/oauth/userinfo")
def userinfo(principal: Annotated[Principal, Depends(require_oauth2_principal)]):
    """Claims about the user the access token was issued for. 401 invalid_token otherwise."""
    return claims_for_scopes(principal)

"""
Sample protected API. Accepts the first-party session token or an OAuth2 access token carrying "profile".
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from oidc_provider.bearer import Principal, require_scopes

router = APIRouter(prefix="/api/v1")


@router.get("/me")
def me(principal: Annotated[Principal, Depends(require_scopes("profile"))]):
    """Caller identity and how it authenticated."""
    user = principal.user
    return {
        "id": user.id,
        "username": user.username,
        "full_name": user.full_name,
        "role": user.role,
        "auth_type": principal.auth_type.value,
        "client_id": principal.client_id,
        "scopes": list(principal.scopes),
    }

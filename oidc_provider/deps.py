"""
FastAPI dependencies that build the per-request components around the request's DB session.
Override these in app.dependency_overrides to substitute test doubles.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from oidc_provider.clients import ClientRegistry
from oidc_provider.codes import AuthorizationCodeManager
from oidc_provider.consent import ConsentStore
from oidc_provider.database import get_db
from oidc_provider.id_tokens import IDTokenIssuer
from oidc_provider.tokens import TokenService
from oidc_provider.users import SqlUserDirectory, UserDirectory


def get_client_registry(db: Session = Depends(get_db)) -> ClientRegistry:
    return ClientRegistry(db)


def get_consent_store(db: Session = Depends(get_db)) -> ConsentStore:
    return ConsentStore(db)


def get_code_manager(db: Session = Depends(get_db)) -> AuthorizationCodeManager:
    return AuthorizationCodeManager(db)


def get_token_service(db: Session = Depends(get_db)) -> TokenService:
    return TokenService(db)


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return SqlUserDirectory(db)


def get_id_token_issuer() -> IDTokenIssuer:
    return IDTokenIssuer()

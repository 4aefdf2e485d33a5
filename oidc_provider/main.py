"""
OAuth2 / OpenID Connect authorization server.
Authorization code flow with PKCE, opaque access and refresh tokens, RS256 ID tokens,
client registry, user consent, revocation, introspection and discovery.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from oidc_provider import config
from oidc_provider.audit import router as audit_router
from oidc_provider.authorize import router as authorize_router
from oidc_provider.client_api import router as client_api_router
from oidc_provider.database import SessionLocal, init_db
from oidc_provider.errors import OAuth2Error, ServerError, oauth2_error_handler
from oidc_provider.introspect import router as introspect_router
from oidc_provider.keys import get_signing_key
from oidc_provider.maintenance import cleanup_expired
from oidc_provider.resource import router as resource_router
from oidc_provider.revoke import router as revoke_router
from oidc_provider.seed import seed_from_env
from oidc_provider.token_endpoint import router as token_router
from oidc_provider.userinfo import router as userinfo_router
from oidc_provider.well_known import router as well_known_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, load signing key, seed user/client from env and drop expired rows on startup."""
    init_db()
    get_signing_key()
    db = SessionLocal()
    try:
        seed_from_env(db)
        if config.CLEANUP_ON_STARTUP:
            cleanup_expired(db, datetime.now(timezone.utc))
    finally:
        db.close()
    yield


app = FastAPI(title="OIDC Provider", version="1.0.0", lifespan=lifespan)
app.add_exception_handler(OAuth2Error, oauth2_error_handler)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    err = ServerError("Internal server error")
    return JSONResponse(status_code=err.status_code, content=err.to_dict(), headers={"Cache-Control": "no-store"})


app.include_router(authorize_router, tags=["authorize"])
app.include_router(token_router, tags=["token"])
app.include_router(userinfo_router, tags=["userinfo"])
app.include_router(revoke_router, tags=["revoke"])
app.include_router(introspect_router, tags=["introspect"])
app.include_router(well_known_router, tags=["well-known"])
app.include_router(client_api_router, tags=["clients"])
app.include_router(audit_router, tags=["audit"])
app.include_router(resource_router, tags=["resource"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "oidc_provider"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oidc_provider.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )

"""
OAuth2 / OIDC error types. Each carries the RFC 6749 error code, an optional description
and the HTTP status it maps to; the app renders them as {"error", "error_description"}.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class OAuth2Error(Exception):
    error = "invalid_request"
    status_code = 400

    def __init__(
        self,
        error_description: str | None = None,
        *,
        error: str | None = None,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.error_description = error_description
        self.headers = headers or {}
        super().__init__(error_description or self.error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.error_description:
            body["error_description"] = self.error_description
        return body


class InvalidRequest(OAuth2Error):
    error = "invalid_request"


class InvalidClient(OAuth2Error):
    error = "invalid_client"
    status_code = 401

    def __init__(self, error_description: str | None = None, **kwargs) -> None:
        kwargs.setdefault("headers", {"WWW-Authenticate": "Basic"})
        super().__init__(error_description, **kwargs)


class InvalidGrant(OAuth2Error):
    error = "invalid_grant"


class RedirectMismatch(InvalidGrant):
    pass


class PkceRequired(InvalidGrant):
    pass


class PkceMismatch(InvalidGrant):
    pass


class InvalidScope(OAuth2Error):
    error = "invalid_scope"


class UnsupportedGrantType(OAuth2Error):
    error = "unsupported_grant_type"


class InvalidToken(OAuth2Error):
    error = "invalid_token"
    status_code = 401

    def __init__(self, error_description: str | None = None, **kwargs) -> None:
        kwargs.setdefault("headers", {"WWW-Authenticate": 'Bearer error="invalid_token"'})
        super().__init__(error_description, **kwargs)


class InsufficientScope(OAuth2Error):
    error = "insufficient_scope"
    status_code = 403


class LoginRequired(OAuth2Error):
    error = "login_required"
    status_code = 401


class AccessDenied(OAuth2Error):
    error = "access_denied"
    status_code = 403


class NotFound(OAuth2Error):
    error = "not_found"
    status_code = 404


class ServerError(OAuth2Error):
    error = "server_error"
    status_code = 500


class SlowDown(OAuth2Error):
    error = "slow_down"
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__("Too many requests", headers={"Retry-After": str(retry_after)})


async def oauth2_error_handler(request: Request, exc: OAuth2Error) -> JSONResponse:
    headers = dict(exc.headers)
    headers.setdefault("Cache-Control", "no-store")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

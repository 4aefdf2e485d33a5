"""
Client authentication at the token and introspection endpoints. RFC 6749 §2.3.1.
Credentials via Authorization: Basic base64(client_id:client_secret) or client_id + client_secret in the form.
"""
import base64
import binascii
import logging
from urllib.parse import unquote_plus

from fastapi import Request

from oidc_provider.clients import ClientRegistry
from oidc_provider.errors import InvalidClient
from oidc_provider.models import Client

logger = logging.getLogger(__name__)


def _parse_basic(header_value: str) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        encoded = header_value.strip()[6:].strip()
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote_plus(client_id.strip()), unquote_plus(client_secret)


def get_client_credentials_from_request(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None]:
    """
    Get (client_id, client_secret) from Authorization Basic (client_secret_basic) or the
    form body (client_secret_post). Basic wins when present.
    """
    auth_header = request.headers.get("Authorization")
    basic = _parse_basic(auth_header) if auth_header else None
    if basic:
        return basic
    if client_id_form:
        return client_id_form.strip(), client_secret_form
    return None, None


def require_client_auth(
    registry: ClientRegistry,
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> Client:
    """Resolve and authenticate the client or raise 401 invalid_client."""
    client_id, client_secret = get_client_credentials_from_request(request, client_id_form, client_secret_form)
    if not client_id:
        raise InvalidClient("client_id is required")
    client = registry.verify_credentials(client_id, client_secret)
    if client is None:
        logger.debug("Client authentication failed for client_id=%s", client_id)
        raise InvalidClient("Invalid client credentials")
    return client

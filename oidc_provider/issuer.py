"""
Issuer URL resolution. Fixed by OAUTH_ISSUER, otherwise derived from the request host and protocol.
"""
from fastapi import Request

from oidc_provider import config

_LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "[::1]", "::1")


def _hostname(host: str) -> str:
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host


def is_loopback_host(host: str) -> bool:
    name = _hostname(host.lower())
    return name in _LOOPBACK_HOSTS or name.endswith(".localhost")


def resolve_issuer(request: Request) -> str:
    """
    Loopback hosts use the scheme the request arrived on. Other hosts honour X-Forwarded-Proto
    and never resolve to plain http, since they sit behind a TLS-terminating proxy.
    """
    if config.ISSUER:
        return config.ISSUER
    host = request.headers.get("host") or request.url.netloc
    if is_loopback_host(host):
        return f"{request.url.scheme}://{host}"
    forwarded = request.headers.get("x-forwarded-proto", "").split(",")[0].strip().lower()
    protocol = forwarded or request.url.scheme
    if protocol == "http":
        protocol = "https"
    return f"{protocol}://{host}"

"""
Credential verification.

Token issuance is external; the core only needs "bearer credential ->
principal id" through a pluggable Authenticator.
"""

from typing import Mapping, Optional, Protocol

import structlog

from ..errors import Unauthenticated

logger = structlog.get_logger()

BEARER_PREFIX = "Bearer "


class Authenticator(Protocol):
    """Resolves a bearer token to a principal id, or None if invalid."""

    def verify(self, token: str) -> Optional[str]: ...


class StaticTokenAuthenticator:
    """Authenticator backed by a fixed token -> principal mapping."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    def verify(self, token: str) -> Optional[str]:
        return self._tokens.get(token)


def parse_bearer(authorization: Optional[str]) -> str:
    """Extract the token from a "Bearer <token>" header value.

    Raises:
        Unauthenticated: If the header is absent or malformed
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise Unauthenticated("Missing or invalid authorization header")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthenticated("Missing or invalid authorization header")
    return token


def authenticate(authenticator: Authenticator, authorization: Optional[str]) -> str:
    """Resolve an authorization header to a principal id.

    Raises:
        Unauthenticated: If the credential is absent, invalid, or the
            authenticator fails
    """
    token = parse_bearer(authorization)
    try:
        principal_id = authenticator.verify(token)
    except Exception:
        logger.warning("authentication_backend_failed", exc_info=True)
        raise Unauthenticated("Authentication failed")
    if not principal_id:
        raise Unauthenticated("Invalid token")
    return principal_id

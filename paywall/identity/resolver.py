"""
Identity resolution for incoming requests.

A valid bearer token resolves to Authenticated(user_id); anything else
(missing, malformed, expired, wrong signature, unknown user) resolves to
Anonymous(ip_address). Resolution never fails.
"""

import logging
from typing import Callable, Mapping, Optional, Sequence

import jwt

from paywall.identity.models import Anonymous, Authenticated, Identity

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "unknown"
DEFAULT_ALGORITHMS = ("HS256",)


def client_ip(headers: Mapping[str, str], peer_address: Optional[str]) -> str:
    """First X-Forwarded-For hop, else the socket peer address."""
    forwarded = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return peer_address or UNKNOWN_ADDRESS


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class IdentityResolver:
    """Derives a stable identity key from an auth header and network address."""

    def __init__(
        self,
        jwt_secret: Optional[str],
        *,
        algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
        user_exists: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self._jwt_secret = jwt_secret
        self._algorithms = list(algorithms)
        self._user_exists = user_exists

    def resolve(self, authorization: Optional[str], ip_address: str) -> Identity:
        user_id = self._verified_user_id(bearer_token(authorization))
        if user_id is not None:
            return Authenticated(user_id=user_id)
        return Anonymous(ip_address=ip_address or UNKNOWN_ADDRESS)

    def resolve_request(self, headers: Mapping[str, str], peer_address: Optional[str]) -> Identity:
        return self.resolve(
            headers.get("authorization") or headers.get("Authorization"),
            client_ip(headers, peer_address),
        )

    def _verified_user_id(self, token: Optional[str]) -> Optional[str]:
        if token is None or not self._jwt_secret:
            return None

        try:
            claims = jwt.decode(token, self._jwt_secret, algorithms=self._algorithms)
        except jwt.InvalidTokenError as e:
            logger.debug("identity.token_rejected", extra={"reason": type(e).__name__})
            return None

        raw_id = claims.get("id") or claims.get("sub")
        if raw_id is None or not str(raw_id).strip():
            return None
        user_id = str(raw_id).strip()

        if self._user_exists is not None and not self._user_exists(user_id):
            logger.info("identity.unknown_user", extra={"user_id": user_id})
            return None
        return user_id

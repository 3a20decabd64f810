"""Identity resolution: authenticated user or anonymous network address."""

from paywall.identity.models import Anonymous, Authenticated, Identity
from paywall.identity.resolver import IdentityResolver, bearer_token, client_ip

__all__ = [
    "Anonymous",
    "Authenticated",
    "Identity",
    "IdentityResolver",
    "bearer_token",
    "client_ip",
]

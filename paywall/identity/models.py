"""Identity sum type used as the metering key."""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Authenticated:
    user_id: str

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class Anonymous:
    ip_address: str

    @property
    def key(self) -> str:
        return f"ip:{self.ip_address}"


# Logging in mid-session yields a different key and therefore a fresh
# quota for the same content. Counters are never merged across the two.
Identity = Union[Authenticated, Anonymous]

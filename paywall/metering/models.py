from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Granted:
    """The view was within quota; the counter now reads views_after."""

    views_after: int

    @property
    def granted(self) -> bool:
        return True


@dataclass(frozen=True)
class QuotaExceeded:
    """The quota was already used up; the counter was left at views_before."""

    views_before: int

    @property
    def granted(self) -> bool:
        return False


MeterResult = Union[Granted, QuotaExceeded]

"""Health policy - decides whether a probe outcome counts as up or down."""
from dataclasses import dataclass
from typing import Optional

from ..config import settings


@dataclass(frozen=True)
class HealthPolicy:
    """Status codes in [healthy_min, healthy_max] are healthy.

    A transport failure (no status code) is always failing.
    """
    healthy_min: int = 200
    healthy_max: int = 399

    def is_healthy(self, status_code: Optional[int], error: Optional[str] = None) -> bool:
        if error is not None or status_code is None:
            return False
        return self.healthy_min <= status_code <= self.healthy_max


def default_policy() -> HealthPolicy:
    return HealthPolicy(
        healthy_min=settings.healthy_status_min,
        healthy_max=settings.healthy_status_max,
    )

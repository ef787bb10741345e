"""Global connection ceiling with a soft warning watermark."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Set

from collabmap.obs import metrics as obs_metrics

REJECTED_MESSAGE = "Sorry! Server is at capacity. Please try again in a few minutes."
WARNING_MESSAGE = "High traffic detected - performance may be slower."


@dataclass(frozen=True)
class Admission:
    accepted: bool
    reason: Optional[str] = None
    warn: bool = False


class CapacityGovernor:
    """Admits connections until ``ceiling`` are held at once.

    Admitted ids are tracked as a set, so releasing twice or releasing an id
    that was never admitted leaves the count untouched and it can never go
    negative.
    """

    def __init__(self, ceiling: int, *, soft_fraction: float = 0.8) -> None:
        if ceiling < 1:
            raise ValueError("ceiling must be >= 1")
        self.ceiling = ceiling
        self.soft_limit = max(1, math.floor(ceiling * soft_fraction))
        self._admitted: Set[str] = set()

    @property
    def count(self) -> int:
        return len(self._admitted)

    def admit(self, sid: str) -> Admission:
        if sid in self._admitted:
            return Admission(accepted=True, warn=self.count >= self.soft_limit)
        if self.count >= self.ceiling:
            obs_metrics.inc_capacity_rejection()
            return Admission(accepted=False, reason="capacity_full")
        self._admitted.add(sid)
        obs_metrics.set_admitted(self.count)
        warn = self.count >= self.soft_limit
        if warn:
            obs_metrics.inc_capacity_warning()
        return Admission(accepted=True, warn=warn)

    def release(self, sid: str) -> bool:
        if sid not in self._admitted:
            return False
        self._admitted.discard(sid)
        obs_metrics.set_admitted(self.count)
        return True

    def is_admitted(self, sid: str) -> bool:
        return sid in self._admitted

    def admitted_ids(self) -> List[str]:
        return list(self._admitted)

    def status(self) -> str:
        if self.count >= self.ceiling:
            return "full"
        if self.count >= self.soft_limit:
            return "high"
        return "normal"

    def snapshot(self) -> dict:
        return {"current": self.count, "max": self.ceiling, "status": self.status()}


__all__ = ["Admission", "CapacityGovernor", "REJECTED_MESSAGE", "WARNING_MESSAGE"]

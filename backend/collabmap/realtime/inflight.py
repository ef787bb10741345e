"""Short-lived "operation in progress" markers used to drop duplicate actions."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Set, Tuple

OperationKey = Tuple[str, str, str]


def operation_key(action: str, activity_id: str, user_id: str) -> OperationKey:
    return (action, activity_id, user_id)


class InFlightOperations:
    """Treated as a cache: clearing it only risks a rare double-processing."""

    def __init__(self) -> None:
        self._keys: Set[OperationKey] = set()

    def acquire(self, key: OperationKey) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def release(self, key: OperationKey) -> None:
        self._keys.discard(key)

    @contextmanager
    def hold(self, key: OperationKey) -> Iterator[bool]:
        """Yield True when the key was free; the marker is always released on exit."""
        acquired = self.acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def clear(self) -> int:
        dropped = len(self._keys)
        self._keys.clear()
        return dropped


__all__ = ["InFlightOperations", "OperationKey", "operation_key"]

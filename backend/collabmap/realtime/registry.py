"""Process-local map of live connections and the activity rooms they joined."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    sid: str
    user_id: Optional[str] = None
    activity_ids: Set[str] = field(default_factory=set)


class ConnectionRegistry:
    """Advisory bookkeeping used for cleanup and fan-out.

    It is never the source of truth for participation and can be rebuilt from
    live transport state plus incoming joins. All methods are synchronous, so
    they run to completion between event-loop suspension points.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def register(self, sid: str) -> Connection:
        connection = self._connections.get(sid)
        if connection is None:
            connection = Connection(sid=sid)
            self._connections[sid] = connection
        return connection

    def unregister(self, sid: str) -> Optional[Connection]:
        """Drop the connection and detach it from every room it joined."""
        connection = self._connections.pop(sid, None)
        if connection is None:
            return None
        for activity_id in connection.activity_ids:
            self._detach(activity_id, sid)
        return connection

    def record_join(self, sid: str, activity_id: str, user_id: str) -> bool:
        connection = self.register(sid)
        if activity_id in connection.activity_ids:
            logger.info("registry_duplicate_join", extra={"sid": sid, "activity_id": activity_id})
            return False
        connection.user_id = user_id
        connection.activity_ids.add(activity_id)
        self._rooms.setdefault(activity_id, set()).add(sid)
        return True

    def record_leave(self, sid: str, activity_id: str) -> bool:
        connection = self._connections.get(sid)
        if connection is None or activity_id not in connection.activity_ids:
            return False
        connection.activity_ids.discard(activity_id)
        self._detach(activity_id, sid)
        return True

    def _detach(self, activity_id: str, sid: str) -> None:
        members = self._rooms.get(activity_id)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._rooms[activity_id]

    def connection(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def connection_ids(self) -> List[str]:
        return list(self._connections.keys())

    def room_members(self, activity_id: str) -> int:
        return len(self._rooms.get(activity_id, ()))

    def room_sids(self, activity_id: str) -> Set[str]:
        return set(self._rooms.get(activity_id, ()))

    def prune_empty(self) -> int:
        empty = [activity_id for activity_id, members in self._rooms.items() if not members]
        for activity_id in empty:
            del self._rooms[activity_id]
        return len(empty)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def activity_count(self) -> int:
        return len(self._rooms)


__all__ = ["Connection", "ConnectionRegistry"]

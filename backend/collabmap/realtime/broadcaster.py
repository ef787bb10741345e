"""Fan-out of activity state changes to the transport's rooms."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from collabmap.obs import metrics as obs_metrics


class Emitter(Protocol):
    async def emit(self, event: str, data: Any = None, *, to: Optional[str] = None, room: Optional[str] = None, namespace: Optional[str] = None, **kwargs: Any) -> None:
        ...


def activity_room(activity_id: str) -> str:
    return f"activity:{activity_id}"


class RoomBroadcaster:
    """Delivers to whoever is attached to the room at call time; nothing is replayed."""

    def __init__(self, emitter: Emitter, *, namespace: str = "/") -> None:
        self._emitter = emitter
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    async def broadcast(self, activity_id: str, event: str, payload: dict) -> None:
        obs_metrics.socket_event(self._namespace, event)
        await self._emitter.emit(event, payload, room=activity_room(activity_id), namespace=self._namespace)


class NullEmitter:
    """Emitter used when no transport is attached (REST-only processes, tests)."""

    async def emit(self, event: str, data: Any = None, **kwargs: Any) -> None:
        return None


__all__ = ["Emitter", "NullEmitter", "RoomBroadcaster", "activity_room"]

"""Redis Stream outbox writer for committed activity mutations."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from collabmap.infra.redis import redis_client


ACTIVITY_EVENT_STREAM = "x:activities.events"


def _stringify_fields(fields: Mapping[str, Any]) -> dict[str, str]:
	return {key: str(value) for key, value in fields.items() if value is not None}


async def append_activity_event(
	event: str,
	*,
	activity_id: str,
	version: int,
	user_id: Optional[str] = None,
	meta: Mapping[str, Any] | None = None,
) -> None:
	fields: dict[str, Any] = {
		"event": event,
		"activity_id": activity_id,
		"version": version,
	}
	if user_id:
		fields["user_id"] = user_id
	if meta:
		for key, value in meta.items():
			fields[f"meta_{key}"] = value
	await redis_client.xadd_capped(ACTIVITY_EVENT_STREAM, _stringify_fields(fields))

"""Socket.IO namespace for live activity participation."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Type

import socketio
from pydantic import ValidationError

from collabmap.domain.activities import policy, schemas
from collabmap.domain.activities.service import ParticipationService
from collabmap.obs import logging as obs_logging
from collabmap.obs import metrics as obs_metrics
from collabmap.realtime.broadcaster import activity_room
from collabmap.realtime.capacity import REJECTED_MESSAGE, WARNING_MESSAGE, CapacityGovernor

logger = logging.getLogger(__name__)


def _validation_message(exc: ValidationError) -> str:
	errors = exc.errors()
	if not errors:
		return "invalid payload"
	first = errors[0]
	location = ".".join(str(part) for part in first.get("loc", ()))
	return f"{location}: {first.get('msg', 'invalid')}" if location else str(first.get("msg", "invalid"))


class ActivitiesNamespace(socketio.AsyncNamespace):
	def __init__(
		self,
		service: ParticipationService,
		governor: CapacityGovernor,
		namespace: str = "/",
	) -> None:
		super().__init__(namespace)
		self._service = service
		self._governor = governor

	@property
	def registry(self):
		return self._service.registry

	def is_live(self, sid: str) -> bool:
		if self.server is None:
			return False
		return bool(self.server.manager.is_connected(sid, self.namespace))

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> Optional[bool]:
		admission = self._governor.admit(sid)
		if not admission.accepted:
			logger.warning(
				"connection_rejected",
				extra={"sid": sid, "reason": admission.reason, "max_connections": self._governor.ceiling},
			)
			obs_metrics.socket_event(self.namespace, "connection_rejected")
			await self.emit(
				"connection_rejected",
				{"reason": admission.reason, "message": REJECTED_MESSAGE},
				to=sid,
			)
			return False
		obs_metrics.socket_connected(self.namespace)
		self.registry.register(sid)
		logger.info(
			"socket_connected",
			extra={"sid": sid, "connections": self._governor.count, "max_connections": self._governor.ceiling},
		)
		if admission.warn:
			obs_metrics.socket_event(self.namespace, "capacity_warning")
			await self.emit("capacity_warning", {"message": WARNING_MESSAGE}, to=sid)
		return None

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		if self._governor.release(sid):
			obs_metrics.socket_disconnected(self.namespace)
		left = await self._service.disconnect(sid)
		logger.info("socket_disconnected", extra={"sid": sid, "activities_left": len(left), "reason": str(reason)})

	async def _reject(self, sid: str, event: str, exc: policy.ActivityPolicyError) -> dict:
		ack = exc.to_ack()
		obs_metrics.socket_event(self.namespace, "action_error")
		await self.emit("action_error", {"event": event, **ack}, to=sid)
		return ack

	async def _dispatch(
		self,
		sid: str,
		event: str,
		schema: Type[schemas.ActivityRef],
		payload: Any,
		handler: Callable[[Any], Awaitable[dict]],
	) -> dict:
		obs_metrics.socket_event(self.namespace, event)
		try:
			data = schema.model_validate(payload or {})
		except ValidationError as exc:
			return await self._reject(sid, event, policy.InvalidInput(message=_validation_message(exc)))
		tokens = obs_logging.bind_context(sid=sid, activity_id=data.activity_id, user_id=data.user_id)
		try:
			return await handler(data)
		except policy.ActivityPolicyError as exc:
			return await self._reject(sid, event, exc)
		finally:
			obs_logging.reset_context(tokens)

	async def on_join_activity(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.JoinActivity) -> dict:
			# A repeated join on the same connection keeps its room membership but
			# still upserts the participant (rename, re-add after removal).
			first_join = self.registry.record_join(sid, data.activity_id, data.user_id)
			if first_join:
				await self.enter_room(sid, activity_room(data.activity_id))
			try:
				participant = await self._service.join(data.activity_id, data.user_id, data.username)
			except policy.ActivityPolicyError:
				if first_join:
					self.registry.record_leave(sid, data.activity_id)
					await self.leave_room(sid, activity_room(data.activity_id))
				raise
			ack = {"ok": True, "participant": participant.to_dict()}
			if not first_join:
				ack["duplicate"] = True
			return ack

		return await self._dispatch(sid, "join_activity", schemas.JoinActivity, payload, handle)

	async def on_leave_activity(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.LeaveActivity) -> dict:
			self.registry.record_leave(sid, data.activity_id)
			await self.leave_room(sid, activity_room(data.activity_id))
			left = await self._service.leave(data.activity_id, data.user_id)
			return {"ok": True, "left": left}

		return await self._dispatch(sid, "leave_activity", schemas.LeaveActivity, payload, handle)

	async def on_submit_rating(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.SubmitRating) -> dict:
			result = await self._service.submit_rating(
				data.activity_id,
				data.user_id,
				x=data.position.x,
				y=data.position.y,
				slot_number=data.slot_number,
				object_name=data.object_name,
			)
			return {"ok": True, "rating": result.rating.to_dict()}

		return await self._dispatch(sid, "submit_rating", schemas.SubmitRating, payload, handle)

	async def on_submit_comment(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.SubmitComment) -> dict:
			comment = await self._service.submit_comment(
				data.activity_id,
				data.user_id,
				text=data.text,
				slot_number=data.slot_number,
				object_name=data.object_name,
			)
			return {"ok": True, "comment": comment.to_dict()}

		return await self._dispatch(sid, "submit_comment", schemas.SubmitComment, payload, handle)

	async def on_vote_comment(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.VoteComment) -> dict:
			result = await self._service.vote_comment(data.activity_id, data.comment_id, data.user_id)
			return {"ok": True, "comment": result.comment.to_dict(), "added": result.added}

		return await self._dispatch(sid, "vote_comment", schemas.VoteComment, payload, handle)

	async def on_clear_slot(self, sid: str, payload: Any = None) -> dict:
		async def handle(data: schemas.ClearSlot) -> dict:
			await self._service.clear_slot(data.activity_id, data.user_id, data.slot_number)
			return {"ok": True, "slotNumber": data.slot_number}

		return await self._dispatch(sid, "clear_slot", schemas.ClearSlot, payload, handle)


__all__ = ["ActivitiesNamespace"]
